"""
Storefront MCP Server.

Exposes the storefront over stdio: catalog search, cart management, account
sign-in, the two-step checkout (address, then payment), and order history.
Card data passed to submit_payment is validated and dropped; it never reaches
the debug log or the tool output.
"""
import asyncio
import json
import logging
from datetime import datetime

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from .account import AccountService
from .backend import Backend, DisabledNotifier, EmailJsNotifier, InMemoryBackend, RestBackend
from .cart import CartStore, cart_total
from .catalog import Catalog
from .checkout import CheckoutFlow
from .config import StorefrontConfig, load_config
from .errors import (
    CollaboratorError,
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    NotAuthenticated,
    StorefrontError,
    ValidationError,
)
from .history import HistoryStatus, OrderHistoryReader
from .models import PaymentDetails
from .redaction import redact_arguments, sanitize_output
from .storage import FileKeyValueStore
from .validation import (
    clean_cvv_input,
    clean_email_input,
    clean_person_name_input,
    format_card_number,
    format_expiry_input,
)

logger = logging.getLogger(__name__)

server = Server("storefront")

# Lazy-initialized singletons
_config: StorefrontConfig | None = None
_backend: Backend | None = None
_cart_store: CartStore | None = None
_checkout: CheckoutFlow | None = None


def _get_config() -> StorefrontConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _debug_log(tool_name: str, args: dict, result: str) -> None:
    """Append a redacted tool call entry to the per-day debug log."""
    try:
        debug_dir = _get_config().debug_dir
        debug_dir.mkdir(parents=True, exist_ok=True)
        log_file = debug_dir / f"session_{datetime.now().strftime('%Y-%m-%d')}.log"
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        entry = (
            f"\n{'='*80}\n"
            f"[{timestamp}] TOOL: {tool_name}\n"
            f"ARGS: {json.dumps(redact_arguments(args), indent=2)}\n"
            f"RESPONSE:\n{result}\n"
        )

        with open(log_file, "a") as f:
            f.write(entry)
    except Exception as e:
        logger.debug("Debug log write failed: %s", e)


def _get_backend() -> Backend:
    global _backend
    if _backend is None:
        config = _get_config()
        if config.backend_url:
            rest = RestBackend(config.backend_url, config.backend_key, timeout=config.http_timeout)
            if config.email_enabled:
                notifier = EmailJsNotifier(
                    config.emailjs_service_id,
                    config.emailjs_template_id,
                    config.emailjs_public_key,
                    timeout=config.http_timeout,
                )
            else:
                notifier = DisabledNotifier()
            _backend = Backend(
                auth=rest, products=rest, addresses=rest, orders=rest, stock=rest, notifier=notifier
            )
        else:
            logger.warning("STOREFRONT_BACKEND_URL not set, using the in-memory backend")
            _backend = InMemoryBackend().as_backend()
    return _backend


def _get_cart_store() -> CartStore:
    global _cart_store
    if _cart_store is None:
        config = _get_config()
        _cart_store = CartStore(
            FileKeyValueStore(config.store_file), _get_backend().products, key=config.cart_key
        )
    return _cart_store


def _get_checkout() -> CheckoutFlow | None:
    return _checkout


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_ADDRESS_PROPERTIES = {
    "street_and_number": {"type": "string", "description": "Street and number"},
    "neighborhood": {"type": "string", "description": "Neighborhood (letters and spaces)"},
    "city": {"type": "string", "description": "City (letters and spaces)"},
    "state": {"type": "string", "description": "State (letters and spaces)"},
    "postal_code": {"type": "string", "description": "5-digit postal code"},
    "phone": {"type": "string", "description": "10-digit phone number"},
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="search_products",
            description="Search the catalog by product name. Returns id, name, price, and stock.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Text to look for in product names"},
                },
                "required": [],
            },
        ),
        Tool(
            name="get_product",
            description="Get one product's details: description, price, image, and available stock.",
            inputSchema={
                "type": "object",
                "properties": {"product_id": {"type": "integer"}},
                "required": ["product_id"],
            },
        ),
        Tool(
            name="view_cart",
            description="Show the cart with refreshed stock, flagged sold-out items, and the total.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="add_to_cart",
            description="Add units of a product to the cart. Rejected when stock would be exceeded.",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "integer"},
                    "quantity": {"type": "integer", "default": 1},
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="update_cart_item",
            description="Set the quantity of a cart item (between 1 and its available stock).",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "integer"},
                    "quantity": {"type": "integer"},
                },
                "required": ["product_id", "quantity"],
            },
        ),
        Tool(
            name="remove_from_cart",
            description="Remove a product from the cart.",
            inputSchema={
                "type": "object",
                "properties": {"product_id": {"type": "integer"}},
                "required": ["product_id"],
            },
        ),
        Tool(
            name="sign_in",
            description="Sign in with email and password.",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string"},
                    "password": {"type": "string"},
                },
                "required": ["email", "password"],
            },
        ),
        Tool(
            name="sign_up",
            description="Create an account. Name: letters only, 2-100. Password: at least 8 characters.",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "email": {"type": "string"},
                    "password": {"type": "string"},
                },
                "required": ["name", "email", "password"],
            },
        ),
        Tool(
            name="sign_out",
            description="Sign out of the current session.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="start_checkout",
            description=(
                "Begin checkout. Requires a signed-in user and a cart with every item in stock. "
                "Loads saved addresses and selects the first one."
            ),
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="select_address",
            description="Choose one of the saved shipping addresses by id.",
            inputSchema={
                "type": "object",
                "properties": {"address_id": {"type": "integer"}},
                "required": ["address_id"],
            },
        ),
        Tool(
            name="save_address",
            description="Save a new shipping address and select it.",
            inputSchema={
                "type": "object",
                "properties": _ADDRESS_PROPERTIES,
                "required": list(_ADDRESS_PROPERTIES),
            },
        ),
        Tool(
            name="continue_to_payment",
            description="Move from address selection to payment. Requires a selected address.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="change_address",
            description="Go back from payment to address selection.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
        Tool(
            name="submit_payment",
            description=(
                "Pay with a Mastercard and place the order. Spaces or dashes in the number are ignored. "
                "Card data is validated and discarded; "
                "it is never stored or shown."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "card_number": {"type": "string", "description": "16-digit Mastercard number"},
                    "cardholder_name": {"type": "string", "description": "Name as printed on the card"},
                    "expiry": {"type": "string", "description": "Expiry as MM/YY"},
                    "cvv": {"type": "string", "description": "3-digit security code"},
                },
                "required": ["card_number", "cardholder_name", "expiry", "cvv"],
            },
        ),
        Tool(
            name="order_history",
            description="List the signed-in user's past orders, newest first.",
            inputSchema={"type": "object", "properties": {}, "required": []},
        ),
    ]


def _error_result(e: StorefrontError) -> dict:
    """Turn a storefront error into the status dict a tool returns."""
    if isinstance(e, ValidationError):
        return {"status": "invalid", "field_errors": e.field_errors}
    if isinstance(e, NotAuthenticated):
        return {"status": "not_authenticated", "message": e.message, "next_step": e.next_step}
    if isinstance(e, InsufficientStock):
        return {
            "status": "insufficient_stock",
            "message": str(e),
            "product_id": e.product_id,
            "available": e.available,
        }
    if isinstance(e, EmptyCart):
        return {"status": "empty_cart", "message": str(e)}
    if isinstance(e, InvalidTransition):
        return {"status": "invalid_state", "message": str(e)}
    if isinstance(e, CollaboratorError):
        return {"status": "error", "message": e.message}
    return {"status": "error", "message": str(e)}


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    handlers = {
        "search_products": _handle_search_products,
        "get_product": _handle_get_product,
        "view_cart": _handle_view_cart,
        "add_to_cart": _handle_add_to_cart,
        "update_cart_item": _handle_update_cart_item,
        "remove_from_cart": _handle_remove_from_cart,
        "sign_in": _handle_sign_in,
        "sign_up": _handle_sign_up,
        "sign_out": _handle_sign_out,
        "start_checkout": _handle_start_checkout,
        "select_address": _handle_select_address,
        "save_address": _handle_save_address,
        "continue_to_payment": _handle_continue_to_payment,
        "change_address": _handle_change_address,
        "submit_payment": _handle_submit_payment,
        "order_history": _handle_order_history,
    }
    handler = handlers.get(name)
    if handler is None:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    try:
        try:
            result = await handler(arguments)
        except StorefrontError as e:
            result = _error_result(e)

        text = result if isinstance(result, str) else json.dumps(result, indent=2, default=str)
        sanitized = sanitize_output(text)

        _debug_log(name, arguments, sanitized)
        return [TextContent(type="text", text=sanitized)]

    except Exception as e:
        logger.exception("Tool %s failed", name)
        error_text = sanitize_output(f"Error: {str(e)}")
        _debug_log(name, arguments, error_text)
        return [TextContent(type="text", text=error_text)]


# ---------------------------------------------------------------------------
# Catalog and cart
# ---------------------------------------------------------------------------

async def _handle_search_products(args: dict) -> dict:
    products = await Catalog(_get_backend().products).search(args.get("query", ""))
    return {
        "status": "ok",
        "results": [
            {"id": p.id, "name": p.name, "price": f"{p.price:.2f}", "stock": p.stock}
            for p in products
        ],
    }


async def _handle_get_product(args: dict) -> dict:
    product = await Catalog(_get_backend().products).get(int(args["product_id"]))
    if product is None:
        return {"status": "not_found", "message": f"Product {args['product_id']} not found"}
    return {"status": "ok", "product": product.model_dump(mode="json")}


def _cart_view(items) -> dict:
    total = cart_total(items)
    return {
        "items": [
            {**item.model_dump(mode="json"), "out_of_stock": item.out_of_stock}
            for item in items
        ],
        "total": f"{total:.2f}",
    }


async def _handle_view_cart(args: dict) -> dict:
    items = await _get_cart_store().load()
    view = _cart_view(items)
    if any(item.out_of_stock for item in items):
        view["message"] = "One or more products are sold out. Remove them before checking out."
    return {"status": "ok", **view}


async def _handle_add_to_cart(args: dict) -> dict:
    product_id = int(args["product_id"])
    product = await Catalog(_get_backend().products).get(product_id)
    if product is None:
        return {"status": "not_found", "message": f"Product {product_id} not found"}
    items = await _get_cart_store().add_item(product, int(args.get("quantity", 1)))
    return {"status": "added", **_cart_view(items)}


async def _handle_update_cart_item(args: dict) -> dict:
    cart = _get_cart_store()
    changed = await cart.set_quantity(int(args["product_id"]), int(args["quantity"]))
    items = await cart.items()
    return {"status": "updated" if changed else "unchanged", **_cart_view(items)}


async def _handle_remove_from_cart(args: dict) -> dict:
    items = await _get_cart_store().remove_item(int(args["product_id"]))
    return {"status": "removed", **_cart_view(items)}


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

async def _handle_sign_in(args: dict) -> dict:
    user = await AccountService(_get_backend().auth).sign_in(args.get("email", ""), args.get("password", ""))
    return {"status": "signed_in", "name": user.display_name}


async def _handle_sign_up(args: dict) -> dict:
    user = await AccountService(_get_backend().auth).register(
        clean_person_name_input(str(args.get("name", ""))),
        clean_email_input(str(args.get("email", ""))),
        str(args.get("password", "")),
    )
    return {"status": "registered", "name": user.display_name}


async def _handle_sign_out(args: dict) -> dict:
    global _checkout
    await AccountService(_get_backend().auth).sign_out()
    _checkout = None
    return {"status": "signed_out"}


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

def _no_checkout() -> dict:
    return {"status": "error", "message": "No checkout in progress. Use start_checkout first."}


async def _handle_start_checkout(args: dict) -> dict:
    global _checkout
    flow = CheckoutFlow(_get_cart_store(), _get_backend())
    await flow.start()
    _checkout = flow
    return {"status": "ok", **flow.snapshot()}


async def _handle_select_address(args: dict) -> dict:
    flow = _get_checkout()
    if flow is None:
        return _no_checkout()
    if not flow.select_address(int(args["address_id"])):
        return {"status": "not_found", "message": f"Address {args['address_id']} is not one of your addresses"}
    return {"status": "ok", **flow.snapshot()}


async def _handle_save_address(args: dict) -> dict:
    flow = _get_checkout()
    if flow is None:
        return _no_checkout()
    fields = {key: str(args.get(key, "")) for key in _ADDRESS_PROPERTIES}
    saved = await flow.save_address(fields)
    return {"status": "saved" if saved else "rejected", **flow.snapshot()}


async def _handle_continue_to_payment(args: dict) -> dict:
    flow = _get_checkout()
    if flow is None:
        return _no_checkout()
    moved = flow.continue_to_payment()
    return {"status": "ok" if moved else "rejected", **flow.snapshot()}


async def _handle_change_address(args: dict) -> dict:
    flow = _get_checkout()
    if flow is None:
        return _no_checkout()
    flow.change_address()
    return {"status": "ok", **flow.snapshot()}


async def _handle_submit_payment(args: dict) -> dict:
    global _checkout
    flow = _get_checkout()
    if flow is None:
        return _no_checkout()
    payment = PaymentDetails(
        card_number=format_card_number(str(args.get("card_number", ""))),
        cardholder_name=str(args.get("cardholder_name", "")),
        expiry=format_expiry_input(str(args.get("expiry", ""))),
        cvv=clean_cvv_input(str(args.get("cvv", ""))),
    )
    result = await flow.submit_payment(payment)
    del payment

    if result.status == "rejected":
        return {"status": "invalid", "field_errors": result.field_errors}
    if result.status == "failed":
        return {"status": "failed", "step": result.failed_step.value, "message": result.error}

    confirmation = result.confirmation
    _checkout = None
    return {
        "status": "success",
        "order_reference": confirmation.order.reference,
        "order_id": confirmation.order.id,
        "total": f"{confirmation.total:.2f}",
        "ship_to": confirmation.address.summary(),
        "items": [
            {"name": i.name, "quantity": i.quantity, "unit_price": f"{i.unit_price:.2f}"}
            for i in confirmation.line_items
        ],
        "warning": result.warning,
    }


async def _handle_order_history(args: dict) -> dict:
    backend = _get_backend()
    history = await OrderHistoryReader(backend.auth, backend.orders).list_orders()
    if history.status == HistoryStatus.UNAUTHENTICATED:
        return {
            "status": "not_authenticated",
            "message": "You have not signed in yet. Sign in to see your order history.",
        }
    if history.status == HistoryStatus.FAILED:
        return {"status": "error", "message": history.error}
    return {
        "status": "ok",
        "orders": [
            {
                "reference": o.reference,
                "date": o.created_at.isoformat(),
                "total": f"{o.total:.2f}",
                "ship_to": f"{o.address.city}, {o.address.state}" if o.address else None,
                "lines": [
                    {
                        "product": line.product_name or "Product not available",
                        "quantity": line.quantity,
                        "unit_price": f"{line.unit_price:.2f}",
                        "line_total": f"{line.line_total:.2f}",
                    }
                    for line in o.lines
                ],
            }
            for o in history.orders
        ],
    }


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------

async def main():
    """Run the MCP server over stdio."""
    config = _get_config()
    logging.basicConfig(level=config.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logger.info("Storefront MCP server starting...")

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        if _backend is not None:
            for collaborator in {id(c): c for c in vars(_backend).values()}.values():
                close = getattr(collaborator, "aclose", None)
                if close is not None:
                    await close()


def run():
    """Sync entry point for console_scripts."""
    asyncio.run(main())
