"""
Unit tests for the read-through lookup path.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from service_orders.app.cache.lru_cache import LRUCache
from service_orders.app.ingestion.validation import parse_order
from service_orders.app.persistence.memory import InMemoryOrderStore
from service_orders.app.reader import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, OrderReader, clamp_limit
from shared.errors import OrderNotFoundError, PersistenceError, ServiceError, ValidationError
from shared.metrics import MetricsCollector
from shared.test_helpers import TestDataFactory


class CountingStore(InMemoryOrderStore):
    """In-memory store that counts point lookups."""

    def __init__(self):
        super().__init__()
        self.get_calls = 0

    async def get_by_key(self, order_uid):
        self.get_calls += 1
        return await super().get_by_key(order_uid)


def make_order(order_uid: str):
    return parse_order(TestDataFactory.create_order_payload(order_uid))


class TestOrderReader:
    """Test cases for OrderReader."""

    @pytest.fixture
    def store(self):
        return CountingStore()

    @pytest.fixture
    def cache(self):
        return LRUCache(5)

    @pytest.fixture
    def reader(self, store, cache):
        return OrderReader(store, cache)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, reader, store, cache):
        """Test that a cached order is served without touching the store."""
        order = make_order("order-1")
        cache.put("order-1", order)

        assert await reader.lookup("order-1") is order
        assert store.get_calls == 0

    @pytest.mark.asyncio
    async def test_miss_reads_through_and_backfills(self, reader, store, cache):
        """Test that the second lookup of a store-only order is a cache hit."""
        await store.create_order(make_order("order-1"))

        first = await reader.lookup("order-1")
        second = await reader.lookup("order-1")

        assert first == second
        assert store.get_calls == 1
        assert "order-1" in cache

    @pytest.mark.asyncio
    async def test_unknown_order_is_not_found(self, reader, cache):
        """Test that a key in neither layer raises OrderNotFoundError."""
        with pytest.raises(OrderNotFoundError) as exc_info:
            await reader.lookup("missing")

        assert exc_info.value.status_code == 404
        assert "missing" not in cache

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_uid", ["", "   "])
    async def test_blank_key_is_validation_error(self, reader, store, order_uid):
        """Test that a blank key never reaches the store."""
        with pytest.raises(ValidationError):
            await reader.lookup(order_uid)

        assert store.get_calls == 0

    @pytest.mark.asyncio
    async def test_store_failure_is_service_error(self, cache):
        """Test that store errors surface as ServiceError and do not touch the cache."""
        store = MagicMock()
        store.get_by_key = AsyncMock(side_effect=PersistenceError("connection reset"))
        reader = OrderReader(store, cache)

        with pytest.raises(ServiceError) as exc_info:
            await reader.lookup("order-1")

        assert exc_info.value.status_code == 500
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_list_recent_uses_clamped_limit(self, cache):
        """Test that listing passes the effective limit to the store."""
        store = MagicMock()
        store.get_recent = AsyncMock(return_value=[])
        reader = OrderReader(store, cache)

        await reader.list_recent(5000)

        store.get_recent.assert_awaited_once_with(DEFAULT_LIST_LIMIT)

    @pytest.mark.asyncio
    async def test_list_recent_failure(self, cache):
        """Test that listing errors surface as ServiceError."""
        store = MagicMock()
        store.get_recent = AsyncMock(side_effect=PersistenceError("timeout"))
        reader = OrderReader(store, cache)

        with pytest.raises(ServiceError):
            await reader.list_recent(10)

    @pytest.mark.asyncio
    async def test_lookups_are_counted(self, store, cache):
        """Test that hits and misses reach the metrics collector."""
        metrics = MetricsCollector("orders")
        reader = OrderReader(store, cache, metrics=metrics)
        await store.create_order(make_order("order-1"))

        await reader.lookup("order-1")
        await reader.lookup("order-1")

        assert metrics.registry.get_sample_value("cache_hits_total", {"cache_type": "orders"}) == 1
        assert metrics.registry.get_sample_value("cache_misses_total", {"cache_type": "orders"}) == 1

    def test_cache_stats(self, reader, cache):
        """Test that cache statistics are reported as-is."""
        cache.put("order-1", make_order("order-1"))

        stats = reader.cache_stats()

        assert stats.size == 1
        assert stats.capacity == 5


class TestClampLimit:
    """Test cases for listing limit handling."""

    @pytest.mark.parametrize("limit,expected", [
        (None, DEFAULT_LIST_LIMIT),
        (0, DEFAULT_LIST_LIMIT),
        (-3, DEFAULT_LIST_LIMIT),
        (1, 1),
        (10, 10),
        (MAX_LIST_LIMIT, MAX_LIST_LIMIT),
        (MAX_LIST_LIMIT + 1, DEFAULT_LIST_LIMIT),
    ])
    def test_clamp(self, limit, expected):
        """Test the accepted range and the fallback."""
        assert clamp_limit(limit) == expected
