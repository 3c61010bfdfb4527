"""Tests for the checkout flow and the order sequence."""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from storefront.checkout import (
    ADDRESSES_LOAD_FAILED,
    NOTIFICATION_FAILED,
    CheckoutFlow,
    CheckoutState,
    CheckoutStep,
    confirmation_template_params,
)
from storefront.errors import (
    CollaboratorError,
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    NotAuthenticated,
)
from storefront.models import Address, CartItem, Order, PaymentDetails, User

TODAY = date(2024, 6, 1)


async def _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields, extra=()):
    """Cart with two keyboards (plus `extra`), a saved address, and the flow on the payment step."""
    await cart.add_item(sample_products[0], 2)
    for product, quantity in extra:
        await cart.add_item(product, quantity)
    user = await backend.get_current_user()
    await backend.create_address(user.id, sample_address_fields)
    await flow.start()
    assert flow.continue_to_payment()
    backend.calls.clear()


def _sell_out_during_checkout(backend, product_id):
    """Stock for `product_id` runs out after the cart refresh, at decrement time."""
    decrement = backend.decrement_stock

    async def racing_decrement(pid, quantity):
        if pid == product_id:
            product = backend.products[pid]
            raise CollaboratorError("stock.decrement", f"Not enough stock for {product.name}")
        await decrement(pid, quantity)

    backend.decrement_stock = racing_decrement


# ---- address step ----

@pytest.mark.asyncio
async def test_start_loads_cart_and_selects_first_address(flow, cart, backend, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    user = await backend.get_current_user()
    first = await backend.create_address(user.id, sample_address_fields)
    await backend.create_address(user.id, sample_address_fields)

    await flow.start()

    assert flow.state == CheckoutState.ADDRESS_SELECTION
    assert len(flow.items) == 1
    assert len(flow.addresses) == 2
    assert flow.selected_address_id == first.id
    assert flow.error is None


@pytest.mark.asyncio
async def test_start_without_addresses_selects_nothing(flow, cart, sample_products):
    await cart.add_item(sample_products[0], 1)
    await flow.start()
    assert flow.addresses == []
    assert flow.selected_address_id is None


@pytest.mark.asyncio
async def test_start_requires_sign_in(flow, cart, backend, sample_products):
    await cart.add_item(sample_products[0], 1)
    await backend.sign_out()
    with pytest.raises(NotAuthenticated) as exc:
        await flow.start()
    assert exc.value.next_step == "checkout"


@pytest.mark.asyncio
async def test_start_with_empty_cart(flow):
    with pytest.raises(EmptyCart):
        await flow.start()


@pytest.mark.asyncio
async def test_start_with_sold_out_item(flow, cart, backend, sample_products):
    await cart.add_item(sample_products[0], 1)
    backend.products[1] = backend.products[1].model_copy(update={"stock": 0})
    with pytest.raises(InsufficientStock):
        await flow.start()


@pytest.mark.asyncio
async def test_address_load_failure_keeps_cart_visible(flow, cart, backend, sample_products):
    await cart.add_item(sample_products[0], 2)
    backend.list_addresses = AsyncMock(side_effect=CollaboratorError("addresses.list", "timeout"))

    await flow.start()

    assert flow.error == ADDRESSES_LOAD_FAILED
    assert len(flow.items) == 1
    assert flow.total == Decimal("200")


@pytest.mark.asyncio
async def test_save_address_selects_new_address(flow, cart, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    await flow.start()

    assert await flow.save_address(sample_address_fields.model_dump()) is True
    assert len(flow.addresses) == 1
    assert flow.selected_address_id == flow.addresses[0].id


@pytest.mark.asyncio
async def test_save_address_validation_never_calls_backend(flow, cart, backend, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    await flow.start()
    backend.calls.clear()

    fields = sample_address_fields.model_dump()
    fields["postal_code"] = "123"
    assert await flow.save_address(fields) is False
    assert "postal_code" in flow.field_errors
    assert "create_address" not in backend.call_names()
    assert flow.addresses == []


@pytest.mark.asyncio
async def test_save_address_backend_failure_leaves_state(flow, cart, backend, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    await flow.start()
    backend.create_address = AsyncMock(side_effect=CollaboratorError("addresses.create", "permission denied"))

    assert await flow.save_address(sample_address_fields.model_dump()) is False
    assert flow.error == "permission denied"
    assert flow.addresses == []
    assert flow.selected_address_id is None


@pytest.mark.asyncio
async def test_select_address(flow, cart, backend, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    user = await backend.get_current_user()
    await backend.create_address(user.id, sample_address_fields)
    second = await backend.create_address(user.id, sample_address_fields)
    await flow.start()

    assert flow.select_address(second.id)
    assert flow.selected_address_id == second.id
    assert not flow.select_address(999)
    assert flow.selected_address_id == second.id


@pytest.mark.asyncio
async def test_continue_requires_selected_address(flow, cart, sample_products):
    await cart.add_item(sample_products[0], 1)
    await flow.start()

    assert flow.continue_to_payment() is False
    assert flow.state == CheckoutState.ADDRESS_SELECTION
    assert "address" in flow.field_errors


@pytest.mark.asyncio
async def test_change_address_returns_to_selection(flow, cart, backend, sample_products, sample_address_fields):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    assert flow.state == CheckoutState.PAYMENT
    flow.change_address()
    assert flow.state == CheckoutState.ADDRESS_SELECTION
    with pytest.raises(InvalidTransition):
        flow.change_address()


@pytest.mark.asyncio
async def test_submit_payment_outside_payment_step(flow, valid_payment):
    with pytest.raises(InvalidTransition):
        await flow.submit_payment(valid_payment)


# ---- payment and order sequence ----

@pytest.mark.asyncio
async def test_end_to_end_checkout(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)

    result = await flow.submit_payment(valid_payment)

    assert result.ok
    assert result.warning is None
    assert flow.state == CheckoutState.SUCCESS
    assert await cart.items() == []
    confirmation = result.confirmation
    assert confirmation.total == Decimal("200")
    assert confirmation.order.total == Decimal("200")
    assert [i.product_id for i in confirmation.line_items] == [1]
    assert confirmation.address.postal_code == "06600"
    assert backend.products[1].stock == 3
    assert len(backend.order_lines) == 1
    assert backend.order_lines[0].unit_price == Decimal("100")
    assert len(backend.outbox) == 1


@pytest.mark.asyncio
async def test_sequence_order(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await cart.add_item(sample_products[1], 1)
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)

    await flow.submit_payment(valid_payment)

    names = [n for n in backend.call_names() if n not in ("get_current_user", "get_stock_by_ids")]
    assert names == [
        "create_order",
        "decrement_stock",
        "decrement_stock",
        "insert_order_lines",
        "send_confirmation",
    ]


@pytest.mark.asyncio
async def test_invalid_card_makes_no_backend_calls(flow, cart, backend, sample_products, sample_address_fields):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)

    result = await flow.submit_payment(PaymentDetails(
        card_number="4111111111111111",
        cardholder_name="Jane Doe",
        expiry="01/20",
        cvv="123",
    ))

    assert result.status == "rejected"
    assert set(result.field_errors) == {"card_number", "expiry"}
    assert backend.calls == []
    assert flow.state == CheckoutState.PAYMENT
    assert len(await cart.items()) == 1


@pytest.mark.asyncio
async def test_not_signed_in_at_payment(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    await backend.sign_out()
    backend.calls.clear()

    result = await flow.submit_payment(valid_payment)

    assert result.status == "failed"
    assert result.failed_step == CheckoutStep.RESOLVE_USER
    assert "create_order" not in backend.call_names()


@pytest.mark.asyncio
async def test_order_creation_failure_surfaces_message(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    backend.create_order = AsyncMock(side_effect=CollaboratorError("orders.create", "row violates policy"))

    result = await flow.submit_payment(valid_payment)

    assert result.status == "failed"
    assert result.failed_step == CheckoutStep.CREATE_ORDER
    assert result.error == "row violates policy"
    assert flow.error == "row violates policy"
    assert flow.state == CheckoutState.PAYMENT
    assert len(await cart.items()) == 1


@pytest.mark.asyncio
async def test_stock_failure_mid_loop_keeps_earlier_decrements(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(
        flow, cart, backend, sample_products, sample_address_fields,
        extra=[(sample_products[1], 2)],
    )
    _sell_out_during_checkout(backend, 2)

    result = await flow.submit_payment(valid_payment)

    assert result.status == "failed"
    assert result.failed_step == CheckoutStep.DECREMENT_STOCK
    assert result.error == "Not enough stock for Wireless Mouse"
    # keyboard (first line) stays decremented
    assert backend.products[1].stock == 3
    assert backend.products[2].stock == 2
    assert len(backend.orders) == 1
    assert backend.order_lines == []
    assert "insert_order_lines" not in backend.call_names()
    assert flow.state == CheckoutState.PAYMENT
    assert len(await cart.items()) == 2


@pytest.mark.asyncio
async def test_stock_failure_logs_decremented_products(flow, cart, backend, sample_products, sample_address_fields, valid_payment, caplog):
    await _ready_for_payment(
        flow, cart, backend, sample_products, sample_address_fields,
        extra=[(sample_products[1], 1)],
    )
    _sell_out_during_checkout(backend, 2)

    with caplog.at_level(logging.ERROR, logger="storefront.checkout"):
        await flow.submit_payment(valid_payment)

    assert "already decremented: [(1, 2)]" in caplog.text


@pytest.mark.asyncio
async def test_order_line_failure(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    backend.insert_order_lines = AsyncMock(side_effect=CollaboratorError("orders.insert_lines", "bad row"))

    result = await flow.submit_payment(valid_payment)

    assert result.failed_step == CheckoutStep.INSERT_ORDER_LINES
    assert backend.outbox == []
    assert len(await cart.items()) == 1


@pytest.mark.asyncio
async def test_notification_failure_is_a_warning(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    backend.send_confirmation = AsyncMock(side_effect=CollaboratorError("notify.send", "quota exceeded"))

    result = await flow.submit_payment(valid_payment)

    assert result.ok
    assert result.warning == NOTIFICATION_FAILED
    assert result.confirmation.notification_sent is False
    assert flow.state == CheckoutState.SUCCESS
    assert await cart.items() == []


@pytest.mark.asyncio
async def test_card_data_not_in_confirmation_or_logs(flow, cart, backend, sample_products, sample_address_fields, valid_payment, caplog):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)

    result = await flow.submit_payment(valid_payment)

    dumped = result.confirmation.model_dump_json()
    assert "5500005555555559" not in dumped
    assert "5500 0055 5555 5559" not in dumped
    assert "5500 0055 5555 5559" not in caplog.text
    assert "5500 0055 5555 5559" not in repr(valid_payment)


def test_confirmation_template_params(sample_address_fields):
    user = User(id="u1", email="jane.doe@example.com")
    order = Order(
        id="abcdef12-3456",
        user_id="u1",
        address_id=1,
        total=Decimal("200"),
        created_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )
    address = Address(id=1, **sample_address_fields.model_dump())
    items = [CartItem(product_id=1, name="Mechanical Keyboard", unit_price=Decimal("100"), quantity=2, available_stock=5)]

    params = confirmation_template_params(user, order, address, items, Decimal("200"))

    assert params["user_name"] == "jane.doe"
    assert params["order_id"] == "ABCDEF12"
    assert params["total"] == "200.00"
    assert params["products"] == "Product: Mechanical Keyboard, Quantity: 2, Price: $100.00"
    assert params["address"] == "Av. Reforma 123, Juárez, Ciudad de México, CDMX"
    assert "2024" in params["date"]


@pytest.mark.asyncio
async def test_expiry_checked_against_injected_today(cart, backend, sample_products, sample_address_fields, valid_payment):
    flow = CheckoutFlow(cart, backend.as_backend(), today=lambda: TODAY.replace(year=2031))
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)

    result = await flow.submit_payment(valid_payment)

    assert result.status == "rejected"
    assert "expiry" in result.field_errors


@pytest.mark.asyncio
async def test_order_reflects_cart_changes_made_during_payment(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    await cart.remove_item(1)
    await cart.add_item(sample_products[1], 1)

    result = await flow.submit_payment(valid_payment)

    assert result.ok
    assert [(line.product_id, line.quantity) for line in backend.order_lines] == [(2, 1)]
    assert backend.products[1].stock == 5
    assert backend.products[2].stock == 1
    assert result.confirmation.total == Decimal("25.50")
    assert [i.product_id for i in result.confirmation.line_items] == [2]
    assert await cart.items() == []


@pytest.mark.asyncio
async def test_cart_emptied_during_payment_places_nothing(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    await cart.clear()

    with pytest.raises(EmptyCart):
        await flow.submit_payment(valid_payment)

    assert "create_order" not in backend.call_names()
    assert backend.orders == {}
    assert flow.state == CheckoutState.PAYMENT


@pytest.mark.asyncio
async def test_sold_out_during_payment_places_nothing(flow, cart, backend, sample_products, sample_address_fields, valid_payment):
    await _ready_for_payment(flow, cart, backend, sample_products, sample_address_fields)
    backend.products[1] = backend.products[1].model_copy(update={"stock": 1})

    with pytest.raises(InsufficientStock):
        await flow.submit_payment(valid_payment)

    assert "create_order" not in backend.call_names()


@pytest.mark.asyncio
async def test_restarting_flow_drops_previous_addresses(flow, cart, backend, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    user = await backend.get_current_user()
    await backend.create_address(user.id, sample_address_fields)
    await flow.start()
    assert flow.selected_address_id is not None

    await backend.sign_out()
    with pytest.raises(NotAuthenticated):
        await flow.start()

    assert flow.addresses == []
    assert flow.selected_address_id is None
    assert flow.continue_to_payment() is False


@pytest.mark.asyncio
async def test_restart_after_user_lookup_failure_drops_previous_addresses(flow, cart, backend, sample_products, sample_address_fields):
    await cart.add_item(sample_products[0], 1)
    user = await backend.get_current_user()
    await backend.create_address(user.id, sample_address_fields)
    await flow.start()
    backend.get_current_user = AsyncMock(side_effect=CollaboratorError("auth.get_user", "timeout"))

    await flow.start()

    assert flow.error == ADDRESSES_LOAD_FAILED
    assert flow.addresses == []
    assert flow.selected_address_id is None
