"""Data models shared by the storefront flows and its collaborators."""
from .schema import (
    Address,
    AddressFields,
    AddressSummary,
    CartItem,
    Confirmation,
    Order,
    OrderDetail,
    OrderLine,
    OrderLineDetail,
    PaymentDetails,
    Product,
    ProductStock,
    User,
)

__all__ = [
    "Address",
    "AddressFields",
    "AddressSummary",
    "CartItem",
    "Confirmation",
    "Order",
    "OrderDetail",
    "OrderLine",
    "OrderLineDetail",
    "PaymentDetails",
    "Product",
    "ProductStock",
    "User",
]
