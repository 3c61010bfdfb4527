"""Pydantic models for catalog, cart, address, payment, and order data."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, SecretStr


class Product(BaseModel):
    """A catalog product with its current stock."""
    id: int
    name: str
    price: Decimal
    image_url: str | None = None
    description: str = ""
    stock: int = 0


class ProductStock(BaseModel):
    id: int
    stock: int


class CartItem(BaseModel):
    """One cart line. Price and image are cached from the product when added."""
    product_id: int
    name: str
    unit_price: Decimal
    image_ref: str | None = None
    quantity: int = Field(ge=1)
    available_stock: int = Field(default=0, ge=0)

    @property
    def out_of_stock(self) -> bool:
        return self.available_stock == 0

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class AddressFields(BaseModel):
    """Shipping address as entered in the form."""
    street_and_number: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    phone: str = ""


class Address(AddressFields):
    """A saved shipping address."""
    id: int

    def summary(self) -> str:
        return f"{self.street_and_number}, {self.neighborhood}, {self.city}, {self.state}"


class AddressSummary(BaseModel):
    """The address columns joined onto an order in the history view."""
    street_and_number: str = ""
    neighborhood: str = ""
    city: str = ""
    state: str = ""


class PaymentDetails(BaseModel):
    """Card data for one payment submission. Never persisted or logged."""
    card_number: SecretStr
    cardholder_name: str
    expiry: str
    cvv: SecretStr


class User(BaseModel):
    id: str
    email: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]


class Order(BaseModel):
    id: str
    user_id: str
    address_id: int
    total: Decimal
    created_at: datetime

    @property
    def reference(self) -> str:
        """Short order number shown to the customer."""
        return self.id[:8].upper() if self.id else "------"


class OrderLine(BaseModel):
    order_id: str
    product_id: int
    quantity: int = Field(ge=1)
    unit_price: Decimal


class OrderLineDetail(BaseModel):
    """An order line joined with the product's name and image."""
    quantity: int
    unit_price: Decimal
    product_name: str | None = None
    product_image: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderDetail(Order):
    """An order with its address and line items, as shown in order history."""
    address: AddressSummary | None = None
    lines: list[OrderLineDetail] = Field(default_factory=list)


class Confirmation(BaseModel):
    """Handed to the confirmation screen after a successful checkout."""
    order: Order
    address: Address
    line_items: list[CartItem]
    total: Decimal
    notification_sent: bool = True
