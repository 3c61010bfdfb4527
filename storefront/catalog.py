"""Catalog reads for the product list and product detail screens."""

from .backend.base import ProductReader
from .models import Product


class Catalog:
    def __init__(self, products: ProductReader):
        self._products = products

    async def search(self, query: str = "") -> list[Product]:
        """Products whose name contains `query`, ignoring case. Empty lists all."""
        return await self._products.search_products(query.strip())

    async def get(self, product_id: int) -> Product | None:
        return await self._products.get_product(product_id)
