"""
Orders service for the Order Cache Service.
"""

import asyncio
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Query
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import OrderServiceException
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig

from .bootstrap import bootstrap_cache
from .cache.lru_cache import LRUCache
from .ingestion.ingestor import IngestionLoop, OrderFeed, OrderIngestor
from .ingestion.kafka_feed import KafkaOrderFeed
from .models import APIResponse
from .persistence.base import OrderStore
from .persistence.memory import InMemoryOrderStore
from .persistence.postgres import PostgreSQLOrderStore
from .reader import OrderReader, clamp_limit


def _envelope(status_code: int, data: Any = None, error: Optional[str] = None) -> JSONResponse:
    body = APIResponse(success=error is None, data=data, error=error)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


class OrderService(BaseService):
    """Orders service implementation.

    Collaborators may be injected; anything left out is built from config.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[OrderStore] = None,
        cache: Optional[LRUCache] = None,
        feed: Optional[OrderFeed] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__("orders", 8081, config=config or get_config("orders", 8081), metrics=metrics)

        self.store = store or self._build_store()
        self.cache = cache or LRUCache(self.config.cache_capacity, logger=self.logger.bind(component="cache"))
        self.metrics.track_gauge("cache_size", lambda: self.cache.stats().size, cache_type="orders")
        self.feed = feed if feed is not None else self._build_feed()
        self.reader = OrderReader(self.store, self.cache, metrics=self.metrics)
        self.ingestor = OrderIngestor(self.store, self.cache, metrics=self.metrics)
        self.ingestion_loop: Optional[IngestionLoop] = None
        self._stop_event = asyncio.Event()
        self._ingestion_task: Optional[asyncio.Task] = None

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_order_routes()
        self.app.state.order_service = self

    def _build_store(self) -> OrderStore:
        if self.config.store_backend == "memory":
            return InMemoryOrderStore()
        return PostgreSQLOrderStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
            timeout=self.config.store_timeout_seconds,
            metrics=self.metrics,
        )

    def _build_feed(self) -> Optional[OrderFeed]:
        if not self.config.ingestion_enabled:
            return None
        return KafkaOrderFeed(
            self.config.kafka_bootstrap,
            self.config.kafka_topic,
            self.config.kafka_group_id,
            commit_after_persist=self.config.commit_after_persist,
            auto_offset_reset=self.config.kafka_auto_offset_reset,
            poll_timeout_ms=self.config.kafka_poll_timeout_ms,
        )

    async def start(self):
        """Open the store, warm the cache, then start consuming."""
        self.logger.info(
            "Starting order service",
            store_backend=self.config.store_backend,
            kafka_topic=self.config.kafka_topic,
            cache_size=self.config.cache_capacity,
        )
        try:
            await self.store.start()
        except OrderServiceException as e:
            # keep serving; lookups report the store as unavailable
            self.logger.error("Order store unavailable at start-up", error=e.message)

        await bootstrap_cache(self.store, self.cache, logger=self.logger.bind(component="bootstrap"))

        if self.feed is None:
            self.logger.info("Ingestion disabled")
            return

        try:
            await self.feed.start()
        except OrderServiceException as e:
            self.logger.error("Ingestion not started", error=e.message)
            return

        self.ingestion_loop = IngestionLoop(
            self.feed,
            self.ingestor,
            commit_after_persist=self.config.commit_after_persist,
            max_redeliveries=self.config.ingest_max_redeliveries,
            backoff=RetryConfig(
                base_delay=self.config.ingest_backoff_seconds,
                max_delay=self.config.ingest_max_backoff_seconds,
            ),
        )
        self._stop_event.clear()
        self._ingestion_task = asyncio.create_task(self.ingestion_loop.run(self._stop_event))

    async def stop(self):
        """Let the in-flight message finish, then release resources."""
        self._stop_event.set()
        if self._ingestion_task is not None:
            await self._ingestion_task
            self._ingestion_task = None

        if self.feed is not None:
            await self.feed.stop()
        await self.store.stop()
        self.logger.info("Order service stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        store_ok = await self.store.health_check()
        ingesting = self._ingestion_task is not None and not self._ingestion_task.done()
        return {
            "store": "ok" if store_ok else "unavailable",
            "ingestion": "running" if ingesting else "stopped",
        }

    def _setup_order_routes(self):
        """Set up order-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "orders",
                "message": "Order Cache Service - Orders",
                "version": "1.0.0",
                "capabilities": ["lookup", "listing", "caching", "ingestion"],
                "endpoints": [
                    "/api/v1/orders/{order_uid}",
                    "/api/v1/orders?limit=N",
                    "/api/v1/cache/stats",
                    "/api/v1/health",
                ],
            }

        @self.app.get("/api/v1/orders/{order_uid}")
        async def get_order(order_uid: str):
            """Get an order, from cache first, then from the store."""
            try:
                order = await self.reader.lookup(order_uid)
            except OrderServiceException as e:
                self.metrics.record_error(e.code)
                return _envelope(e.status_code, error=e.message)
            return _envelope(200, data=order.to_dict())

        @self.app.get("/api/v1/orders")
        async def list_orders(limit: Optional[int] = Query(None, description="Max orders, 1-1000, default 50")):
            """List the most recently created orders."""
            effective_limit = clamp_limit(limit)
            try:
                orders = await self.reader.list_recent(effective_limit)
            except OrderServiceException as e:
                self.metrics.record_error(e.code)
                return _envelope(e.status_code, error=e.message)
            return _envelope(200, data={
                "orders": [order.to_dict() for order in orders],
                "count": len(orders),
                "limit": effective_limit,
            })

        @self.app.get("/api/v1/cache/stats")
        async def cache_stats():
            """Cache statistics."""
            return _envelope(200, data=asdict(self.reader.cache_stats()))

        @self.app.get("/api/v1/health")
        async def api_health():
            """Store reachability plus cache statistics."""
            if not await self.store.health_check():
                self.metrics.record_health_check("error")
                return _envelope(503, error="Database is unavailable")
            self.metrics.record_health_check("ok")
            return _envelope(200, data={
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "cache": asdict(self.reader.cache_stats()),
            })


def create_app():
    """Create orders service application."""
    service = OrderService()
    return service.app


if __name__ == "__main__":
    service = OrderService()
    service.run()
