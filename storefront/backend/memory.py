"""In-process backend: the whole collaborator surface held in dictionaries.

Records every call in `calls` so tests can assert the order of side effects.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from ..errors import CollaboratorError
from ..models import (
    Address,
    AddressFields,
    AddressSummary,
    Order,
    OrderDetail,
    OrderLine,
    OrderLineDetail,
    Product,
    ProductStock,
    User,
)
from .base import (
    AddressStore,
    AuthProvider,
    Backend,
    NotificationSender,
    OrderStore,
    ProductReader,
    StockMutator,
)

logger = logging.getLogger(__name__)


class InMemoryBackend(AuthProvider, ProductReader, AddressStore, OrderStore, StockMutator, NotificationSender):
    """Single object implementing every collaborator interface."""

    def __init__(self, products: list[Product] | None = None):
        self.products: dict[int, Product] = {p.id: p for p in (products or [])}
        self.addresses: dict[int, tuple[str, Address]] = {}
        self.orders: dict[str, Order] = {}
        self.order_lines: list[OrderLine] = []
        self.outbox: list[dict[str, str]] = []
        self.calls: list[tuple[str, tuple]] = []
        self._users: dict[str, tuple[str, User]] = {}
        self._current: User | None = None
        self._next_address_id = 1

    def as_backend(self) -> Backend:
        return Backend(auth=self, products=self, addresses=self, orders=self, stock=self, notifier=self)

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    # -- auth ---------------------------------------------------------------

    def add_user(self, email: str, password: str, name: str | None = None, signed_in: bool = False) -> User:
        user = User(id=str(uuid4()), email=email, name=name)
        self._users[email] = (password, user)
        if signed_in:
            self._current = user
        return user

    async def get_current_user(self) -> User | None:
        self._record("get_current_user")
        return self._current

    async def sign_in(self, email: str, password: str) -> User:
        self._record("sign_in", email)
        entry = self._users.get(email)
        if entry is None or entry[0] != password:
            raise CollaboratorError("auth.sign_in", "Invalid login credentials")
        self._current = entry[1]
        return entry[1]

    async def sign_up(self, email: str, password: str, profile: dict[str, Any]) -> User:
        self._record("sign_up", email)
        if email in self._users:
            raise CollaboratorError("auth.sign_up", "User already registered")
        user = self.add_user(email, password, name=profile.get("name"), signed_in=True)
        return user

    async def sign_out(self) -> None:
        self._record("sign_out")
        self._current = None

    # -- products -----------------------------------------------------------

    async def get_stock_by_ids(self, ids: list[int]) -> list[ProductStock]:
        self._record("get_stock_by_ids", tuple(ids))
        return [ProductStock(id=p.id, stock=p.stock) for pid, p in self.products.items() if pid in ids]

    async def get_product(self, product_id: int) -> Product | None:
        self._record("get_product", product_id)
        return self.products.get(product_id)

    async def search_products(self, query: str) -> list[Product]:
        self._record("search_products", query)
        needle = query.lower()
        return [p for p in self.products.values() if needle in p.name.lower()]

    # -- addresses ----------------------------------------------------------

    async def list_addresses(self, user_id: str) -> list[Address]:
        self._record("list_addresses", user_id)
        return [addr for owner, addr in self.addresses.values() if owner == user_id]

    async def create_address(self, user_id: str, fields: AddressFields) -> Address:
        self._record("create_address", user_id)
        address = Address(id=self._next_address_id, **fields.model_dump())
        self.addresses[address.id] = (user_id, address)
        self._next_address_id += 1
        return address

    # -- orders -------------------------------------------------------------

    async def create_order(self, user_id: str, address_id: int, total: Decimal) -> Order:
        self._record("create_order", user_id, address_id, total)
        order = Order(
            id=str(uuid4()),
            user_id=user_id,
            address_id=address_id,
            total=total,
            created_at=datetime.now(timezone.utc),
        )
        self.orders[order.id] = order
        return order

    async def insert_order_lines(self, lines: list[OrderLine]) -> None:
        self._record("insert_order_lines", len(lines))
        self.order_lines.extend(lines)

    async def list_orders_with_details(self, user_id: str) -> list[OrderDetail]:
        self._record("list_orders_with_details", user_id)
        details = []
        for order in self.orders.values():
            if order.user_id != user_id:
                continue
            address = None
            if order.address_id in self.addresses:
                address = AddressSummary(**self.addresses[order.address_id][1].model_dump())
            lines = []
            for line in self.order_lines:
                if line.order_id != order.id:
                    continue
                product = self.products.get(line.product_id)
                lines.append(OrderLineDetail(
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    product_name=product.name if product else None,
                    product_image=product.image_url if product else None,
                ))
            details.append(OrderDetail(**order.model_dump(), address=address, lines=lines))
        details.sort(key=lambda o: o.created_at, reverse=True)
        return details

    # -- stock --------------------------------------------------------------

    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        self._record("decrement_stock", product_id, quantity)
        product = self.products.get(product_id)
        if product is None:
            raise CollaboratorError("stock.decrement", f"Product {product_id} not found")
        if product.stock < quantity:
            raise CollaboratorError("stock.decrement", f"Not enough stock for {product.name}")
        self.products[product_id] = product.model_copy(update={"stock": product.stock - quantity})

    # -- notifications ------------------------------------------------------

    async def send_confirmation(self, template_params: dict[str, str]) -> None:
        self._record("send_confirmation", template_params.get("order_id"))
        self.outbox.append(dict(template_params))
        logger.info("Queued confirmation for order %s", template_params.get("order_id"))
