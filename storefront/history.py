"""Order history: a read-only view of the signed-in user's past orders."""
import logging
from dataclasses import dataclass, field
from enum import Enum

from .backend.base import AuthProvider, OrderStore
from .errors import CollaboratorError
from .models import OrderDetail

logger = logging.getLogger(__name__)


class HistoryStatus(str, Enum):
    OK = "ok"
    UNAUTHENTICATED = "unauthenticated"
    FAILED = "failed"


@dataclass
class OrderHistory:
    """`UNAUTHENTICATED` is distinct from an OK status with no orders."""
    status: HistoryStatus
    orders: list[OrderDetail] = field(default_factory=list)
    error: str | None = None


class OrderHistoryReader:
    def __init__(self, auth: AuthProvider, orders: OrderStore):
        self._auth = auth
        self._orders = orders

    async def list_orders(self, user_id: str | None = None) -> OrderHistory:
        """Orders with address and lines, newest first.

        Without `user_id` the signed-in user is used.
        """
        try:
            if user_id is None:
                user = await self._auth.get_current_user()
                if user is None:
                    return OrderHistory(status=HistoryStatus.UNAUTHENTICATED)
                user_id = user.id
            orders = await self._orders.list_orders_with_details(user_id)
        except CollaboratorError as e:
            logger.error("Could not load order history: %s", e)
            return OrderHistory(status=HistoryStatus.FAILED, error=str(e))

        orders = sorted(orders, key=lambda o: o.created_at, reverse=True)
        return OrderHistory(status=HistoryStatus.OK, orders=orders)
