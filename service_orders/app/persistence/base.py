"""
Durable order store capability.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import OrderFull


class OrderStore(ABC):
    """Append-only store of order aggregates.

    Implementations raise ``DuplicateOrderError`` when ``create_order`` hits
    an existing key, ``RejectedOrderError`` when the content itself can never
    be stored and ``PersistenceError`` for any other failure; in every case
    nothing of the order is left behind.
    """

    async def start(self):
        """Acquire resources (connection pools, schema)."""

    async def stop(self):
        """Release resources."""

    @abstractmethod
    async def create_order(self, order: OrderFull) -> None:
        """Atomically write the order with its delivery, payment and items."""

    @abstractmethod
    async def get_by_key(self, order_uid: str) -> Optional[OrderFull]:
        """Return the full aggregate, or None if the key is unknown."""

    @abstractmethod
    async def exists(self, order_uid: str) -> bool:
        """Check whether an order with this key is stored."""

    @abstractmethod
    async def get_recent(self, limit: int) -> List[OrderFull]:
        """Return up to ``limit`` orders, most recently created first."""

    async def health_check(self) -> bool:
        """Check store health."""
        return True
