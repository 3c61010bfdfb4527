"""Hosted backend over its REST interface (auth, tables, and RPC).

Talks to the auth endpoints under /auth/v1 and the table/RPC endpoints under
/rest/v1. Rows come back with the store's own column names and are decoded
into the storefront models here, so nothing past this module sees them.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

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
from .base import AddressStore, AuthProvider, OrderStore, ProductReader, StockMutator

logger = logging.getLogger(__name__)

PRODUCTS_TABLE = "productos"
ADDRESSES_TABLE = "direccionusuario"
ORDERS_TABLE = "pedidos"
ORDER_LINES_TABLE = "detallepedido"
USERS_TABLE = "usuarios"
DECREMENT_STOCK_RPC = "decrementar_piezas"

_ORDER_HISTORY_SELECT = (
    "id_pedido,fecha,total,direccion_id,usuario_id,"
    "direccionUsuario:direccion_id(calle_numero,colonia,ciudad,estado),"
    "detallepedido(cantidad,precio_unitario,productos:id_producto(nombre,imagen_url))"
)


# ---------------------------------------------------------------------------
# Row decoding
# ---------------------------------------------------------------------------

def _product_from_row(row: dict) -> Product:
    return Product(
        id=row["id_producto"],
        name=row["nombre"],
        price=Decimal(str(row["precio"])),
        image_url=row.get("imagen_url"),
        description=row.get("descripcion") or "",
        stock=row.get("piezas") or 0,
    )


def _address_from_row(row: dict) -> Address:
    return Address(
        id=row["id"],
        street_and_number=row.get("calle_numero") or "",
        neighborhood=row.get("colonia") or "",
        city=row.get("ciudad") or "",
        state=row.get("estado") or "",
        postal_code=row.get("cp") or "",
        phone=row.get("telefono") or "",
    )


def _address_to_row(user_id: str, fields: AddressFields) -> dict:
    return {
        "usuario_id": user_id,
        "calle_numero": fields.street_and_number,
        "colonia": fields.neighborhood,
        "ciudad": fields.city,
        "estado": fields.state,
        "cp": fields.postal_code,
        "telefono": fields.phone,
    }


def _order_from_row(row: dict) -> Order:
    return Order(
        id=str(row["id_pedido"]),
        user_id=row["usuario_id"],
        address_id=row["direccion_id"],
        total=Decimal(str(row["total"])),
        created_at=row["fecha"],
    )


def _order_detail_from_row(row: dict) -> OrderDetail:
    joined_address = row.get("direccionUsuario")
    address = None
    if joined_address:
        address = AddressSummary(
            street_and_number=joined_address.get("calle_numero") or "",
            neighborhood=joined_address.get("colonia") or "",
            city=joined_address.get("ciudad") or "",
            state=joined_address.get("estado") or "",
        )
    lines = []
    for line in row.get("detallepedido") or []:
        product = line.get("productos") or {}
        lines.append(OrderLineDetail(
            quantity=line["cantidad"],
            unit_price=Decimal(str(line["precio_unitario"])),
            product_name=product.get("nombre"),
            product_image=product.get("imagen_url"),
        ))
    order = _order_from_row(row)
    return OrderDetail(**order.model_dump(), address=address, lines=lines)


def _user_from_payload(payload: dict) -> User:
    metadata = payload.get("user_metadata") or {}
    return User(
        id=payload["id"],
        email=payload.get("email") or "",
        name=metadata.get("name") or metadata.get("full_name"),
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("message", "msg", "error_description", "error"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {response.status_code}"


class RestBackend(AuthProvider, ProductReader, AddressStore, OrderStore, StockMutator):
    """Every collaborator except notifications, over one HTTP client."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._access_token: str | None = None
        self._user: User | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=self._headers(prefer)
            )
        except httpx.HTTPError as e:
            logger.error("Backend unavailable during %s: %s", operation, e)
            raise CollaboratorError(operation, f"Backend unavailable: {e}") from e
        if response.status_code >= 400:
            message = _error_message(response)
            logger.error("Backend rejected %s (%s): %s", operation, response.status_code, message)
            raise CollaboratorError(operation, message)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorError(operation, "Backend returned a non-JSON response") from e

    def _decode(self, operation: str, decoder, payload):
        try:
            return decoder(payload)
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise CollaboratorError(operation, f"Unexpected response shape: {e}") from e

    # -- auth ---------------------------------------------------------------

    async def get_current_user(self) -> User | None:
        if self._access_token is None:
            return None
        if self._user is None:
            payload = await self._request("auth.get_user", "GET", "/auth/v1/user")
            self._user = self._decode("auth.get_user", _user_from_payload, payload)
        return self._user

    async def sign_in(self, email: str, password: str) -> User:
        payload = await self._request(
            "auth.sign_in",
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        user = self._decode("auth.sign_in", lambda p: _user_from_payload(p["user"]), payload)
        self._access_token = payload.get("access_token")
        self._user = user
        return user

    async def sign_up(self, email: str, password: str, profile: dict[str, Any]) -> User:
        payload = await self._request(
            "auth.sign_up",
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": profile},
        )
        # With email confirmation on, the user comes back without a session
        payload = payload or {}
        user = self._decode("auth.sign_up", _user_from_payload, payload.get("user") or payload)
        if payload.get("access_token"):
            self._access_token = payload["access_token"]
            self._user = user
        await self._request(
            "users.insert",
            "POST",
            f"/rest/v1/{USERS_TABLE}",
            json=[{
                "id_usuario": user.id,
                "nombre": profile.get("name"),
                "email": email,
                "fecha_registro": datetime.now(timezone.utc).isoformat(),
            }],
        )
        return user

    async def sign_out(self) -> None:
        if self._access_token is not None:
            await self._request("auth.sign_out", "POST", "/auth/v1/logout")
        self._access_token = None
        self._user = None

    # -- products -----------------------------------------------------------

    async def get_stock_by_ids(self, ids: list[int]) -> list[ProductStock]:
        if not ids:
            return []
        rows = await self._request(
            "products.stock",
            "GET",
            f"/rest/v1/{PRODUCTS_TABLE}",
            params={
                "select": "id_producto,piezas",
                "id_producto": f"in.({','.join(str(i) for i in ids)})",
            },
        )
        return self._decode(
            "products.stock",
            lambda rs: [ProductStock(id=r["id_producto"], stock=r.get("piezas") or 0) for r in rs],
            rows or [],
        )

    async def get_product(self, product_id: int) -> Product | None:
        rows = await self._request(
            "products.get",
            "GET",
            f"/rest/v1/{PRODUCTS_TABLE}",
            params={"select": "*", "id_producto": f"eq.{product_id}"},
        )
        if not rows:
            return None
        return self._decode("products.get", _product_from_row, rows[0])

    async def search_products(self, query: str) -> list[Product]:
        rows = await self._request(
            "products.search",
            "GET",
            f"/rest/v1/{PRODUCTS_TABLE}",
            params={"select": "*", "nombre": f"ilike.*{query}*"},
        )
        return self._decode("products.search", lambda rs: [_product_from_row(r) for r in rs], rows or [])

    # -- addresses ----------------------------------------------------------

    async def list_addresses(self, user_id: str) -> list[Address]:
        rows = await self._request(
            "addresses.list",
            "GET",
            f"/rest/v1/{ADDRESSES_TABLE}",
            params={"select": "*", "usuario_id": f"eq.{user_id}"},
        )
        return self._decode("addresses.list", lambda rs: [_address_from_row(r) for r in rs], rows or [])

    async def create_address(self, user_id: str, fields: AddressFields) -> Address:
        rows = await self._request(
            "addresses.create",
            "POST",
            f"/rest/v1/{ADDRESSES_TABLE}",
            json=[_address_to_row(user_id, fields)],
            prefer="return=representation",
        )
        return self._decode("addresses.create", lambda rs: _address_from_row(rs[0]), rows)

    # -- orders -------------------------------------------------------------

    async def create_order(self, user_id: str, address_id: int, total: Decimal) -> Order:
        rows = await self._request(
            "orders.create",
            "POST",
            f"/rest/v1/{ORDERS_TABLE}",
            json=[{"usuario_id": user_id, "direccion_id": address_id, "total": float(total)}],
            prefer="return=representation",
        )
        return self._decode("orders.create", lambda rs: _order_from_row(rs[0]), rows)

    async def insert_order_lines(self, lines: list[OrderLine]) -> None:
        await self._request(
            "orders.insert_lines",
            "POST",
            f"/rest/v1/{ORDER_LINES_TABLE}",
            json=[
                {
                    "id_pedido": line.order_id,
                    "id_producto": line.product_id,
                    "cantidad": line.quantity,
                    "precio_unitario": float(line.unit_price),
                }
                for line in lines
            ],
        )

    async def list_orders_with_details(self, user_id: str) -> list[OrderDetail]:
        rows = await self._request(
            "orders.history",
            "GET",
            f"/rest/v1/{ORDERS_TABLE}",
            params={
                "select": _ORDER_HISTORY_SELECT,
                "usuario_id": f"eq.{user_id}",
                "order": "fecha.desc",
            },
        )
        return self._decode("orders.history", lambda rs: [_order_detail_from_row(r) for r in rs], rows or [])

    # -- stock --------------------------------------------------------------

    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        await self._request(
            "stock.decrement",
            "POST",
            f"/rest/v1/rpc/{DECREMENT_STOCK_RPC}",
            json={"product_id": product_id, "quantity": quantity},
        )
