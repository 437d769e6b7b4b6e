"""
Idempotent order ingestion.

``OrderIngestor`` takes one raw payload through decode, validation, the
existence check, the durable write and the cache update. ``IngestionLoop``
drives it sequentially from a feed and decides when offsets are committed.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

import structlog

from shared.errors import (
    DuplicateOrderError,
    PersistenceError,
    RejectedOrderError,
    TransientInfraError,
    ValidationError,
)
from shared.logging import get_logger, set_order_context
from shared.metrics import MetricsCollector
from shared.retry import Backoff, RetryConfig
from ..cache.lru_cache import OrderCache
from ..models import IngestOutcome
from ..persistence.base import OrderStore
from .validation import parse_order


@dataclass(frozen=True)
class FeedMessage:
    """One message pulled from the feed."""
    topic: str
    partition: int
    offset: int
    value: Optional[bytes]
    key: Optional[bytes] = None
    timestamp: Optional[int] = None


class OrderFeed(Protocol):
    """Message source consumed by the ingestion loop."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def fetch(self) -> Optional[FeedMessage]:
        """Return the next message, or None if nothing arrived in time.

        Raises TransientInfraError when the feed itself is failing.
        """
        ...

    async def commit(self, message: FeedMessage) -> None:
        """Mark the message as done so it is not redelivered."""
        ...

    async def rewind(self, message: FeedMessage) -> None:
        """Arrange for the message to be delivered again."""
        ...


class OrderIngestor:
    """Processes single order messages."""

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
        self.logger = logger or get_logger("orders.ingestion.ingestor")

    async def process(self, payload: Optional[bytes]) -> IngestOutcome:
        """Run one payload through the pipeline and report its outcome.

        Never raises for bad input or store failures; those are reported as
        ``INVALID`` and ``FAILED`` respectively. Content the store refuses
        outright is ``INVALID`` too, since redelivery cannot fix it.
        """
        outcome = await self._process(payload)
        set_order_context(None)
        if self.metrics is not None:
            self.metrics.record_ingest_outcome(outcome.value)
        return outcome

    async def _process(self, payload: Optional[bytes]) -> IngestOutcome:
        if not payload:
            # tombstones and empty records carry no order
            self.logger.error("Empty message payload, skipping")
            return IngestOutcome.INVALID

        try:
            order = parse_order(payload, logger=self.logger)
        except ValidationError as e:
            self.logger.error(
                "Failed to parse message",
                error=e.message,
                details=e.details,
                raw_message=payload[:1024].decode("utf-8", errors="replace"),
            )
            return IngestOutcome.INVALID

        set_order_context(order.order_uid)

        try:
            if await self.store.exists(order.order_uid):
                self.logger.info("Order already exists, skipping", order_uid=order.order_uid)
                return IngestOutcome.DUPLICATE

            await self.store.create_order(order)
        except DuplicateOrderError:
            # another consumer stored it between the check and the write
            self.logger.info("Order stored concurrently, skipping", order_uid=order.order_uid)
            return IngestOutcome.DUPLICATE
        except RejectedOrderError as e:
            self.logger.error(
                "Order rejected by store, skipping",
                order_uid=order.order_uid,
                error=e.message,
                details=e.details,
            )
            return IngestOutcome.INVALID
        except PersistenceError as e:
            self.logger.error(
                "Failed to persist order",
                order_uid=order.order_uid,
                error=e.message,
                details=e.details,
            )
            return IngestOutcome.FAILED

        self.cache.put(order.order_uid, order)
        self.logger.info("Order processed successfully", order_uid=order.order_uid)
        return IngestOutcome.STORED


class IngestionLoop:
    """Sequential consume loop: one message fully processed before the next."""

    def __init__(
        self,
        feed: OrderFeed,
        ingestor: OrderIngestor,
        *,
        commit_after_persist: bool = True,
        max_redeliveries: int = 5,
        backoff: Optional[RetryConfig] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ):
        self.feed = feed
        self.ingestor = ingestor
        self.commit_after_persist = commit_after_persist
        self.max_redeliveries = max_redeliveries
        self.backoff = Backoff(backoff or RetryConfig(base_delay=1.0, max_delay=30.0))
        self.logger = logger or get_logger("orders.ingestion.loop")
        self.processed: Dict[IngestOutcome, int] = {outcome: 0 for outcome in IngestOutcome}
        self._redeliveries: Dict[Tuple[str, int, int], int] = {}

    async def run(self, stop_event: asyncio.Event) -> None:
        """Consume until ``stop_event`` is set.

        The event is only checked between messages; a message that has been
        fetched always runs to completion first.
        """
        self.logger.info("Ingestion loop started", commit_after_persist=self.commit_after_persist)
        while not stop_event.is_set():
            try:
                await self.step()
            except TransientInfraError as e:
                delay = self.backoff.next_delay()
                self.logger.warning("Feed unavailable, backing off", error=e.message, delay=delay)
                await self._sleep(stop_event, delay)
            except Exception as e:
                delay = self.backoff.next_delay()
                self.logger.error("Unexpected error in ingestion loop", error=str(e), delay=delay, exc_info=True)
                await self._sleep(stop_event, delay)
        self.logger.info("Ingestion loop stopped", processed={k.value: v for k, v in self.processed.items()})

    async def step(self) -> Optional[IngestOutcome]:
        """Fetch and handle at most one message."""
        message = await self.feed.fetch()
        if message is None:
            return None

        self.logger.debug(
            "Received message",
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
        )

        outcome = await self.ingestor.process(message.value)
        self.processed[outcome] += 1
        position = (message.topic, message.partition, message.offset)

        if outcome.is_final:
            self._redeliveries.pop(position, None)
            self.backoff.reset()
            if self.commit_after_persist:
                await self.feed.commit(message)
            return outcome

        if self.commit_after_persist:
            attempts = self._redeliveries.get(position, 0)
            if attempts >= self.max_redeliveries:
                # keep the partition moving; the order stays unstored
                self._redeliveries.pop(position, None)
                self.logger.error(
                    "Order dropped after repeated persistence failures",
                    partition=message.partition,
                    offset=message.offset,
                    redeliveries=attempts,
                )
                await self.feed.commit(message)
                return outcome

            self._redeliveries[position] = attempts + 1
            await self.feed.rewind(message)
            raise TransientInfraError(
                "Order could not be persisted, message will be redelivered",
                {"partition": message.partition, "offset": message.offset},
            )

        self.logger.error(
            "Order lost: offset already committed",
            partition=message.partition,
            offset=message.offset,
        )
        return outcome

    @staticmethod
    async def _sleep(stop_event: asyncio.Event, delay: float) -> None:
        # wake early on shutdown
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
