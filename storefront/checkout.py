"""Checkout: address selection, then payment, then the order sequence.

The order sequence runs strictly one step after another:

    resolve address -> resolve user -> create order -> decrement stock
    -> insert order lines -> send confirmation -> clear cart

The first failing step aborts the rest and its message is surfaced as-is.
Completed steps are not rolled back: stock already decremented for earlier
items stays decremented. Only the confirmation email is best-effort; when it
fails the order still counts as placed and a warning is surfaced instead.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from .backend.base import Backend
from .cart import CartStore, cart_total
from .errors import (
    CheckoutStepFailed,
    CollaboratorError,
    InvalidTransition,
    NoAddressSelected,
    NotAuthenticated,
    StorefrontError,
)
from .models import Address, AddressFields, CartItem, Confirmation, Order, OrderLine, PaymentDetails, User
from .validation import validate_address_fields, validate_payment_fields

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADDRESSES_LOAD_FAILED = "Could not load your addresses. Please try again."
SELECT_ADDRESS = "Please select an address"
SIGN_IN_TO_BUY = "To purchase, you need to sign in."
NOTIFICATION_FAILED = (
    "Order completed, but the confirmation email could not be sent. Check your spam folder."
)


class CheckoutState(str, Enum):
    ADDRESS_SELECTION = "address_selection"
    PAYMENT = "payment"
    SUCCESS = "success"


class CheckoutStep(str, Enum):
    RESOLVE_ADDRESS = "resolve_address"
    RESOLVE_USER = "resolve_user"
    CREATE_ORDER = "create_order"
    DECREMENT_STOCK = "decrement_stock"
    INSERT_ORDER_LINES = "insert_order_lines"
    SEND_CONFIRMATION = "send_confirmation"
    CLEAR_CART = "clear_cart"


@dataclass
class CheckoutResult:
    """What submit_payment reports back to the screen."""
    status: str  # "success", "rejected" (validation), or "failed"
    field_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    failed_step: CheckoutStep | None = None
    warning: str | None = None
    confirmation: Confirmation | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


def confirmation_template_params(
    user: User,
    order: Order,
    address: Address,
    items: list[CartItem],
    total: Decimal,
) -> dict[str, str]:
    """Fields for the confirmation email template."""
    products = "\n".join(
        f"Product: {item.name}, Quantity: {item.quantity}, Price: ${item.unit_price:.2f}"
        for item in items
    )
    return {
        "user_name": user.display_name,
        "user_email": user.email,
        "order_id": order.reference,
        "products": products,
        "total": f"{total:.2f}",
        "date": order.created_at.strftime("%d %B %Y"),
        "address": address.summary(),
    }


class CheckoutFlow:
    """Two-step checkout bound to one cart and one backend.

    Screens read `state`, `addresses`, `selected_address_id`, `items`,
    `error`, `warning` and `field_errors`; they never touch the cart
    snapshot directly.
    """

    def __init__(self, cart: CartStore, backend: Backend, today: Callable[[], date] = date.today):
        self._cart = cart
        self._backend = backend
        self._today = today
        self.state = CheckoutState.ADDRESS_SELECTION
        self.items: list[CartItem] = []
        self.addresses: list[Address] = []
        self.selected_address_id: int | None = None
        self.error: str | None = None
        self.warning: str | None = None
        self.field_errors: dict[str, str] = {}
        self.confirmation: Confirmation | None = None
        self._submitting = False

    @property
    def total(self) -> Decimal:
        return cart_total(self.items)

    @property
    def selected_address(self) -> Address | None:
        return next((a for a in self.addresses if a.id == self.selected_address_id), None)

    def _require_state(self, expected: CheckoutState, action: str) -> None:
        if self.state != expected:
            raise InvalidTransition(self.state.value, action)

    # -- address step -------------------------------------------------------

    async def start(self) -> None:
        """Enter address selection: load the cart and the saved addresses.

        Raises EmptyCart or InsufficientStock when the cart cannot be bought,
        and NotAuthenticated when nobody is signed in. A failure loading the
        addresses only sets `error`; the cart is still shown.
        """
        self.state = CheckoutState.ADDRESS_SELECTION
        self.addresses = []
        self.selected_address_id = None
        self.error = None
        self.warning = None
        self.field_errors = {}
        self.confirmation = None
        self.items = await self._cart.load()
        await self._cart.ensure_purchasable()

        try:
            user = await self._backend.auth.get_current_user()
        except CollaboratorError as e:
            logger.error("Could not resolve user for checkout: %s", e)
            self.error = ADDRESSES_LOAD_FAILED
            return
        if user is None:
            raise NotAuthenticated(next_step="checkout", message=SIGN_IN_TO_BUY)

        try:
            self.addresses = await self._backend.addresses.list_addresses(user.id)
        except CollaboratorError as e:
            logger.error("Could not load addresses for %s: %s", user.id, e)
            self.addresses = []
            self.error = ADDRESSES_LOAD_FAILED
            return
        self.selected_address_id = self.addresses[0].id if self.addresses else None

    def select_address(self, address_id: int) -> bool:
        self._require_state(CheckoutState.ADDRESS_SELECTION, "select an address")
        if not any(a.id == address_id for a in self.addresses):
            return False
        self.selected_address_id = address_id
        self.field_errors.pop("address", None)
        return True

    async def save_address(self, fields: dict) -> bool:
        """Validate and persist a new address, then select it.

        Returns True only on success so the form can reset its inputs.
        Nothing local changes when validation or the backend call fails.
        """
        self._require_state(CheckoutState.ADDRESS_SELECTION, "save an address")
        errors = validate_address_fields(fields)
        if errors:
            self.field_errors = errors
            return False

        try:
            user = await self._backend.auth.get_current_user()
            if user is None:
                raise NotAuthenticated(next_step="checkout", message=SIGN_IN_TO_BUY)
            address = await self._backend.addresses.create_address(user.id, AddressFields(**fields))
        except (CollaboratorError, NotAuthenticated) as e:
            logger.error("Saving address failed: %s", e)
            self.error = str(e) or "Could not save the address"
            return False

        self.addresses.append(address)
        self.selected_address_id = address.id
        self.field_errors = {}
        self.error = None
        return True

    def continue_to_payment(self) -> bool:
        self._require_state(CheckoutState.ADDRESS_SELECTION, "continue to payment")
        if self.selected_address is None:
            self.field_errors = {"address": SELECT_ADDRESS}
            self.error = SELECT_ADDRESS
            return False
        self.error = None
        self.field_errors = {}
        self.state = CheckoutState.PAYMENT
        return True

    def change_address(self) -> None:
        self._require_state(CheckoutState.PAYMENT, "change the address")
        self.field_errors = {}
        self.state = CheckoutState.ADDRESS_SELECTION

    # -- payment step -------------------------------------------------------

    async def submit_payment(self, payment: PaymentDetails) -> CheckoutResult:
        """Validate the card, then place the order.

        The card is checked for shape only (Mastercard BIN, Luhn, expiry,
        holder name, CVV); passing counts as authorization. Card data is not
        kept past this check.

        The cart is re-read after the card passes. Raises EmptyCart or
        InsufficientStock when it can no longer be bought.
        """
        self._require_state(CheckoutState.PAYMENT, "submit payment")
        if self._submitting:
            raise InvalidTransition(self.state.value, "submit payment twice")

        errors = validate_payment_fields(
            payment.card_number.get_secret_value(),
            payment.cardholder_name,
            payment.expiry,
            payment.cvv.get_secret_value(),
            today=self._today(),
        )
        if errors:
            self.field_errors = errors
            return CheckoutResult(status="rejected", field_errors=errors)
        del payment

        # order what the cart holds now, not the snapshot taken by start()
        await self._cart.load()
        self.items = await self._cart.ensure_purchasable()

        self._submitting = True
        self.error = None
        self.warning = None
        self.field_errors = {}
        try:
            confirmation = await self._place_order()
        except CheckoutStepFailed as e:
            self.error = str(e.cause)
            return CheckoutResult(status="failed", error=self.error, failed_step=CheckoutStep(e.step))
        finally:
            self._submitting = False

        self.state = CheckoutState.SUCCESS
        self.confirmation = confirmation
        self.items = []
        return CheckoutResult(status="success", warning=self.warning, confirmation=confirmation)

    async def _step(self, step: CheckoutStep, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except StorefrontError as e:
            logger.error("Checkout step %s failed: %s", step.value, e)
            raise CheckoutStepFailed(step.value, e) from e

    async def _place_order(self) -> Confirmation:
        async def resolve_address() -> Address:
            address = self.selected_address
            if address is None:
                raise NoAddressSelected()
            return address

        async def resolve_user() -> User:
            user = await self._backend.auth.get_current_user()
            if user is None:
                raise NotAuthenticated(next_step="checkout", message=SIGN_IN_TO_BUY)
            return user

        items = list(self.items)
        total = cart_total(items)

        address = await self._step(CheckoutStep.RESOLVE_ADDRESS, resolve_address)
        user = await self._step(CheckoutStep.RESOLVE_USER, resolve_user)
        order = await self._step(
            CheckoutStep.CREATE_ORDER,
            lambda: self._backend.orders.create_order(user.id, address.id, total),
        )
        logger.info("Order %s created for %d item(s), total %s", order.id, len(items), total)

        decremented: list[tuple[int, int]] = []
        for item in items:
            try:
                await self._backend.stock.decrement_stock(item.product_id, item.quantity)
            except StorefrontError as e:
                logger.error(
                    "Stock decrement failed for product %s on order %s; already decremented: %s",
                    item.product_id, order.id, decremented,
                )
                raise CheckoutStepFailed(CheckoutStep.DECREMENT_STOCK.value, e, decremented) from e
            decremented.append((item.product_id, item.quantity))

        lines = [
            OrderLine(order_id=order.id, product_id=item.product_id, quantity=item.quantity, unit_price=item.unit_price)
            for item in items
        ]
        await self._step(CheckoutStep.INSERT_ORDER_LINES, lambda: self._backend.orders.insert_order_lines(lines))

        notification_sent = True
        params = confirmation_template_params(user, order, address, items, total)
        try:
            await self._backend.notifier.send_confirmation(params)
        except CollaboratorError as e:
            logger.warning("Confirmation email for order %s failed: %s", order.id, e)
            self.warning = NOTIFICATION_FAILED
            notification_sent = False

        try:
            await self._cart.clear()
        except CollaboratorError as e:
            logger.warning("Order %s placed but the cart could not be cleared: %s", order.id, e)

        return Confirmation(
            order=order,
            address=address,
            line_items=items,
            total=total,
            notification_sent=notification_sent,
        )

    def snapshot(self) -> dict:
        """Plain-data view of the flow for the tool layer."""
        return {
            "state": self.state.value,
            "items": [item.model_dump(mode="json") for item in self.items],
            "total": f"{self.total:.2f}",
            "addresses": [a.model_dump(mode="json") for a in self.addresses],
            "selected_address_id": self.selected_address_id,
            "error": self.error,
            "warning": self.warning,
            "field_errors": dict(self.field_errors),
        }
