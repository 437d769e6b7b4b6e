"""
Read-through lookup path for orders.
"""

from typing import List, Optional

import structlog

from shared.errors import OrderNotFoundError, PersistenceError, ServiceError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .cache.lru_cache import OrderCache
from .models import CacheStats, OrderFull
from .persistence.base import OrderStore


DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 1000


def clamp_limit(limit: Optional[int]) -> int:
    """Listing limit: the default unless 1 <= limit <= MAX_LIST_LIMIT."""
    if limit is None or limit <= 0 or limit > MAX_LIST_LIMIT:
        return DEFAULT_LIST_LIMIT
    return limit


class OrderReader:
    """Serves lookups from the cache, falling back to the store on a miss."""

    def __init__(
        self,
        store: OrderStore,
        cache: OrderCache,
        *,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ):
        self.store = store
        self.cache = cache
        self.metrics = metrics
        self.logger = logger or get_logger("orders.reader")

    async def lookup(self, order_uid: str) -> OrderFull:
        """Return the order or raise OrderNotFoundError.

        A store failure raises ServiceError and leaves the cache untouched.
        """
        if not order_uid or not order_uid.strip():
            raise ValidationError("order_uid is required")

        order = self.cache.get(order_uid)
        if order is not None:
            self._record_lookup(hit=True)
            self.logger.debug("Order found in cache", order_uid=order_uid)
            return order

        self._record_lookup(hit=False)
        try:
            order = await self.store.get_by_key(order_uid)
        except PersistenceError as e:
            self.logger.error("Failed to get order from store", order_uid=order_uid, error=e.message)
            raise ServiceError("Internal server error", {"order_uid": order_uid}) from e

        if order is None:
            self.logger.debug("Order not found", order_uid=order_uid)
            raise OrderNotFoundError(order_uid)

        self.cache.put(order_uid, order)
        self.logger.debug("Order found in store and added to cache", order_uid=order_uid)
        return order

    async def list_recent(self, limit: Optional[int] = None) -> List[OrderFull]:
        """Most recently created orders straight from the store."""
        try:
            return await self.store.get_recent(clamp_limit(limit))
        except PersistenceError as e:
            self.logger.error("Failed to list orders from store", error=e.message)
            raise ServiceError("Internal server error") from e

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def _record_lookup(self, hit: bool):
        if self.metrics is not None:
            self.metrics.record_cache_lookup(hit)
