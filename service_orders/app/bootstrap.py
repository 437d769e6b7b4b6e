"""
Start-up cache warm from the durable store.
"""

from typing import Optional

import structlog

from shared.errors import PersistenceError
from shared.logging import get_logger
from .cache.lru_cache import OrderCache
from .persistence.base import OrderStore


async def bootstrap_cache(
    store: OrderStore,
    cache: OrderCache,
    logger: Optional[structlog.BoundLogger] = None,
) -> int:
    """Load up to ``cache.capacity`` of the newest orders into the cache.

    The store lists newest first; the list is loaded oldest first so the
    newest order ends up most recently used and the oldest one is the first
    to be evicted. A failing store leaves the cache empty and start-up goes
    on. Returns the number of entries loaded.
    """
    logger = logger or get_logger("orders.bootstrap")
    logger.info("Restoring cache from store", capacity=cache.capacity)

    try:
        orders = await store.get_recent(cache.capacity)
    except PersistenceError as e:
        logger.error("Failed to restore cache from store", error=e.message, details=e.details)
        return 0

    if not orders:
        logger.info("No orders found in store")
        return 0

    loaded = cache.bulk_load((order.order_uid, order) for order in reversed(orders))
    logger.info("Cache restored successfully", loaded_orders=loaded)
    return loaded
