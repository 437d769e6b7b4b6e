"""
In-memory order store.

Keeps the same contract as the PostgreSQL store so the service can run
without a database (``ORDERS_STORE_BACKEND=memory``) and tests can use it
as a real collaborator.
"""

import asyncio
from typing import Dict, List, Optional

import structlog

from shared.errors import DuplicateOrderError
from shared.logging import get_logger
from .base import OrderStore
from ..models import OrderFull


class InMemoryOrderStore(OrderStore):
    """Order mirror keyed by order_uid, remembering insertion order."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None):
        self.logger = logger or get_logger("orders.persistence.memory")
        self._orders: Dict[str, OrderFull] = {}
        self._lock = asyncio.Lock()

    async def create_order(self, order: OrderFull) -> None:
        async with self._lock:
            if order.order_uid in self._orders:
                raise DuplicateOrderError(order.order_uid)
            self._orders[order.order_uid] = order
        self.logger.info("Order saved", order_uid=order.order_uid)

    async def get_by_key(self, order_uid: str) -> Optional[OrderFull]:
        return self._orders.get(order_uid)

    async def exists(self, order_uid: str) -> bool:
        return order_uid in self._orders

    async def get_recent(self, limit: int) -> List[OrderFull]:
        if limit <= 0:
            return []
        # dicts keep insertion order, newest is last
        return list(reversed(list(self._orders.values())))[:limit]

    def __len__(self) -> int:
        return len(self._orders)
