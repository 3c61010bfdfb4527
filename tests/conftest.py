"""Shared test fixtures."""
from datetime import date
from decimal import Decimal

import pytest

from storefront.backend.memory import InMemoryBackend
from storefront.cart import CartStore
from storefront.checkout import CheckoutFlow
from storefront.models import AddressFields, PaymentDetails, Product
from storefront.storage import MemoryKeyValueStore

TODAY = date(2024, 6, 1)


@pytest.fixture
def sample_products():
    return [
        Product(id=1, name="Mechanical Keyboard", price=Decimal("100"), image_url="kb.png", stock=5),
        Product(id=2, name="Wireless Mouse", price=Decimal("25.50"), image_url="mouse.png", stock=2),
        Product(id=3, name="USB Hub", price=Decimal("15"), stock=0),
    ]


@pytest.fixture
def backend(sample_products):
    b = InMemoryBackend(products=sample_products)
    b.add_user("jane.doe@example.com", "secret-pass", name="Jane Doe", signed_in=True)
    return b


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def cart(kv_store, backend):
    return CartStore(kv_store, backend)


@pytest.fixture
def sample_address_fields():
    return AddressFields(
        street_and_number="Av. Reforma 123",
        neighborhood="Juárez",
        city="Ciudad de México",
        state="CDMX",
        postal_code="06600",
        phone="5512345678",
    )


@pytest.fixture
def valid_payment():
    return PaymentDetails(
        card_number="5500 0055 5555 5559",
        cardholder_name="Jane Doe",
        expiry="12/30",
        cvv="123",
    )


@pytest.fixture
def flow(cart, backend):
    return CheckoutFlow(cart, backend.as_backend(), today=lambda: TODAY)
