"""
Fixed-capacity in-memory LRU cache for order aggregates.
"""

import threading
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import structlog

from shared.logging import get_logger
from ..models import CacheStats, OrderFull


class OrderCache(Protocol):
    """Cache capability consumed by the ingestor, reader and bootstrapper."""

    capacity: int

    def get(self, order_uid: str) -> Optional[OrderFull]: ...

    def put(self, order_uid: str, order: OrderFull) -> None: ...

    def bulk_load(self, entries: Iterable[Tuple[str, OrderFull]]) -> int: ...

    def stats(self) -> CacheStats: ...

    def clear(self) -> None: ...


class _Node:
    __slots__ = ("key", "value", "prev", "next")

    def __init__(self, key: Optional[str] = None, value: Optional[OrderFull] = None):
        self.key = key
        self.value = value
        self.prev: "_Node" = self
        self.next: "_Node" = self


class LRUCache:
    """Hash map over a doubly linked recency list.

    The list runs from the sentinel's ``next`` (most recently used) to the
    sentinel's ``prev`` (least recently used). ``get`` reorders the list, so
    every operation, reads included, takes the same exclusive lock.
    """

    def __init__(self, capacity: int, logger: Optional[structlog.BoundLogger] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.logger = logger or get_logger("orders.cache.lru")
        self._lock = threading.Lock()
        self._map: Dict[str, _Node] = {}
        self._root = _Node()
        self._hits = 0
        self._misses = 0

    # list primitives, callers hold the lock

    def _unlink(self, node: _Node) -> None:
        node.prev.next = node.next
        node.next.prev = node.prev

    def _push_front(self, node: _Node) -> None:
        node.prev = self._root
        node.next = self._root.next
        self._root.next.prev = node
        self._root.next = node

    def _insert(self, key: str, value: OrderFull) -> None:
        node = self._map.get(key)
        if node is not None:
            node.value = value
            self._unlink(node)
            self._push_front(node)
            return

        node = _Node(key, value)
        self._map[key] = node
        self._push_front(node)

        if len(self._map) > self.capacity:
            oldest = self._root.prev
            self._unlink(oldest)
            del self._map[oldest.key]
            self.logger.debug("Cache evicted oldest", evicted_order_uid=oldest.key)

    def get(self, order_uid: str) -> Optional[OrderFull]:
        """Return the cached order and mark it most recently used."""
        with self._lock:
            node = self._map.get(order_uid)
            if node is None:
                self._misses += 1
                return None
            self._unlink(node)
            self._push_front(node)
            self._hits += 1
            return node.value

    def put(self, order_uid: str, order: OrderFull) -> None:
        """Insert or overwrite an entry, evicting the LRU one when over capacity."""
        with self._lock:
            self._insert(order_uid, order)

    def bulk_load(self, entries: Iterable[Tuple[str, OrderFull]]) -> int:
        """Load entries in order until the cache is full.

        The first entry loaded ends up least recently used. Entries that do
        not fit are dropped; keys already cached are refreshed in place.
        """
        loaded = 0
        with self._lock:
            for order_uid, order in entries:
                if order_uid not in self._map and len(self._map) >= self.capacity:
                    break
                self._insert(order_uid, order)
                loaded += 1

        self.logger.info("Cache bulk loaded", loaded_count=loaded, capacity=self.capacity)
        return loaded

    def stats(self) -> CacheStats:
        """Snapshot of size, capacity and hit/miss counters."""
        with self._lock:
            return CacheStats(
                size=len(self._map),
                capacity=self.capacity,
                hits=self._hits,
                misses=self._misses,
            )

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._map = {}
            self._root = _Node()
        self.logger.info("Cache cleared")

    def keys(self) -> List[str]:
        """Cached keys from most to least recently used."""
        with self._lock:
            result = []
            node = self._root.next
            while node is not self._root:
                result.append(node.key)
                node = node.next
            return result

    def __len__(self) -> int:
        with self._lock:
            return len(self._map)

    def __contains__(self, order_uid: object) -> bool:
        # membership does not count as a use
        with self._lock:
            return order_uid in self._map
