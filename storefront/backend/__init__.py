"""Collaborator interfaces and their implementations."""
from .base import (
    AddressStore,
    AuthProvider,
    Backend,
    NotificationSender,
    OrderStore,
    ProductReader,
    StockMutator,
)
from .memory import InMemoryBackend
from .notify import DisabledNotifier, EmailJsNotifier
from .rest import RestBackend

__all__ = [
    "AddressStore",
    "AuthProvider",
    "Backend",
    "DisabledNotifier",
    "EmailJsNotifier",
    "InMemoryBackend",
    "NotificationSender",
    "OrderStore",
    "ProductReader",
    "RestBackend",
    "StockMutator",
]
