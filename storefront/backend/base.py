"""Abstract collaborator interfaces for the hosted backend.

Implementations raise CollaboratorError for any transport or backend failure
and return decoded models, never raw response payloads.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..models import Address, AddressFields, Order, OrderDetail, OrderLine, Product, ProductStock, User


class AuthProvider(ABC):
    """Password authentication and the current session's user."""

    @abstractmethod
    async def get_current_user(self) -> User | None:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> User:
        ...

    @abstractmethod
    async def sign_up(self, email: str, password: str, profile: dict[str, Any]) -> User:
        """Create the account and its profile row."""
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...


class ProductReader(ABC):
    @abstractmethod
    async def get_stock_by_ids(self, ids: list[int]) -> list[ProductStock]:
        ...

    @abstractmethod
    async def get_product(self, product_id: int) -> Product | None:
        ...

    @abstractmethod
    async def search_products(self, query: str) -> list[Product]:
        """Case-insensitive substring match on product name."""
        ...


class AddressStore(ABC):
    @abstractmethod
    async def list_addresses(self, user_id: str) -> list[Address]:
        ...

    @abstractmethod
    async def create_address(self, user_id: str, fields: AddressFields) -> Address:
        ...


class OrderStore(ABC):
    @abstractmethod
    async def create_order(self, user_id: str, address_id: int, total: Decimal) -> Order:
        ...

    @abstractmethod
    async def insert_order_lines(self, lines: list[OrderLine]) -> None:
        ...

    @abstractmethod
    async def list_orders_with_details(self, user_id: str) -> list[OrderDetail]:
        """Orders joined with address and lines, newest first."""
        ...


class StockMutator(ABC):
    @abstractmethod
    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        """Atomic at the backend. Calling twice decrements twice."""
        ...


class NotificationSender(ABC):
    @abstractmethod
    async def send_confirmation(self, template_params: dict[str, str]) -> None:
        ...


@dataclass
class Backend:
    """Every collaborator the storefront flows talk to."""
    auth: AuthProvider
    products: ProductReader
    addresses: AddressStore
    orders: OrderStore
    stock: StockMutator
    notifier: NotificationSender
