"""Cart store: the persisted list of cart items and its stock rules.

The snapshot lives under a single key of the local key-value store. Every
operation re-reads the snapshot, so the stored list is the only state; a
rejected mutation leaves it untouched.
"""
import logging
from decimal import Decimal

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .backend.base import ProductReader
from .errors import CollaboratorError, EmptyCart, InsufficientStock, ValidationError
from .models import CartItem, Product
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_CART_KEY = "cart"

_items_adapter = TypeAdapter(list[CartItem])


def cart_total(items: list[CartItem]) -> Decimal:
    return sum((item.line_total for item in items), Decimal("0"))


class CartStore:
    """Owns the cart snapshot. Other components go through this class only."""

    def __init__(self, store: KeyValueStore, products: ProductReader, key: str = DEFAULT_CART_KEY):
        self._store = store
        self._products = products
        self._key = key

    async def _read(self) -> list[CartItem]:
        raw = await self._store.get_item(self._key)
        if not raw:
            return []
        try:
            return _items_adapter.validate_json(raw)
        except PydanticValidationError as e:
            logger.warning("Discarding unreadable cart snapshot: %s", e.error_count())
            return []

    async def _write(self, items: list[CartItem]) -> None:
        await self._store.set_item(self._key, _items_adapter.dump_json(items).decode("utf-8"))

    async def items(self) -> list[CartItem]:
        """The persisted list as-is, without a stock refresh."""
        return await self._read()

    async def load(self) -> list[CartItem]:
        """Read the snapshot and refresh each item's available stock."""
        items = await self._read()
        if not items:
            return items
        try:
            stock = await self._products.get_stock_by_ids([item.product_id for item in items])
        except CollaboratorError as e:
            logger.warning("Stock lookup failed, showing cart without refresh: %s", e)
            return items
        by_id = {entry.id: entry.stock for entry in stock}
        hydrated = [
            item.model_copy(update={"available_stock": max(by_id.get(item.product_id, 0), 0)})
            for item in items
        ]
        await self._write(hydrated)
        return hydrated

    async def add_item(self, product: Product, quantity: int = 1) -> list[CartItem]:
        """Add `quantity` units, merging with an existing line for the product.

        Raises InsufficientStock without touching the snapshot when the
        resulting quantity would exceed the product's stock.
        """
        if quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1"})
        items = await self._read()
        existing: CartItem | None = next((i for i in items if i.product_id == product.id), None)
        current = existing.quantity if existing else 0
        if current + quantity > product.stock:
            raise InsufficientStock(product.id, current + quantity, product.stock)

        if existing:
            updated = existing.model_copy(update={
                "quantity": current + quantity,
                "available_stock": product.stock,
            })
            items = [updated if i.product_id == product.id else i for i in items]
        else:
            items.append(CartItem(
                product_id=product.id,
                name=product.name,
                unit_price=product.price,
                image_ref=product.image_url,
                quantity=quantity,
                available_stock=product.stock,
            ))
        await self._write(items)
        logger.debug("Cart now holds %d of product %s", current + quantity, product.id)
        return items

    async def set_quantity(self, product_id: int, new_quantity: int) -> bool:
        """Change a line's quantity. No-op unless 1 <= new_quantity <= available stock."""
        items = await self._read()
        item = next((i for i in items if i.product_id == product_id), None)
        if item is None or not 1 <= new_quantity <= item.available_stock:
            return False
        items = [
            i.model_copy(update={"quantity": new_quantity}) if i.product_id == product_id else i
            for i in items
        ]
        await self._write(items)
        return True

    async def remove_item(self, product_id: int) -> list[CartItem]:
        items = [i for i in await self._read() if i.product_id != product_id]
        await self._write(items)
        return items

    async def clear(self) -> None:
        await self._store.remove_item(self._key)

    async def total(self) -> Decimal:
        return cart_total(await self._read())

    async def ensure_purchasable(self) -> list[CartItem]:
        """Gate before checkout: non-empty, and every line covered by stock."""
        items = await self._read()
        if not items:
            raise EmptyCart()
        for item in items:
            if item.out_of_stock or item.quantity > item.available_stock:
                raise InsufficientStock(item.product_id, item.quantity, item.available_stock)
        return items
