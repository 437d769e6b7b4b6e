"""
Kafka feed for the Orders Service ingestion loop.
"""

import asyncio
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Deque, Optional

import kafka
import structlog
from kafka.errors import KafkaError
from kafka.structs import OffsetAndMetadata, TopicPartition

from shared.errors import ServiceError, TransientInfraError
from shared.logging import get_logger
from .ingestor import FeedMessage


class KafkaOrderFeed:
    """Pulls order messages from one topic, one at a time.

    kafka-python's consumer blocks and is not thread-safe, so every call to
    it runs on a single dedicated worker thread.

    With ``commit_after_persist`` auto-commit is disabled and offsets move
    only through ``commit``; ``rewind`` seeks back so a failed message is
    fetched again. Without it the consumer auto-commits in the background
    and ``commit``/``rewind`` are no-ops.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        *,
        commit_after_persist: bool = True,
        auto_offset_reset: str = "latest",
        poll_timeout_ms: int = 1000,
        max_poll_records: int = 100,
        logger: Optional[structlog.BoundLogger] = None,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.group_id = group_id
        self.commit_after_persist = commit_after_persist
        self.auto_offset_reset = auto_offset_reset
        self.poll_timeout_ms = poll_timeout_ms
        self.max_poll_records = max_poll_records
        self.logger = logger or get_logger("orders.ingestion.kafka")
        self.consumer: Optional[kafka.KafkaConsumer] = None
        self._buffer: Deque[FeedMessage] = deque()
        self._executor: Optional[ThreadPoolExecutor] = None

    async def start(self):
        """Start the Kafka consumer."""
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kafka-feed")
        try:
            self.consumer = await self._call(
                kafka.KafkaConsumer,
                self.topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                auto_offset_reset=self.auto_offset_reset,
                enable_auto_commit=not self.commit_after_persist,
                max_poll_records=self.max_poll_records,
                session_timeout_ms=30000,
                heartbeat_interval_ms=10000,
            )
            self.logger.info(
                "Kafka consumer started",
                topic=self.topic,
                group_id=self.group_id,
                commit_after_persist=self.commit_after_persist,
            )
        except Exception as e:
            self.logger.error("Failed to start Kafka consumer", error=str(e))
            self._executor.shutdown(wait=False)
            self._executor = None
            raise ServiceError("Failed to start Kafka consumer", {"error": str(e)}) from e

    async def stop(self):
        """Stop the Kafka consumer."""
        self._buffer.clear()
        if self.consumer is not None:
            try:
                await self._call(self.consumer.close)
            except KafkaError as e:
                self.logger.warning("Error closing Kafka consumer", error=str(e))
            self.consumer = None
            self.logger.info("Kafka consumer stopped")
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def _call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    def _require_consumer(self) -> kafka.KafkaConsumer:
        if self.consumer is None:
            raise TransientInfraError("Kafka consumer not started")
        return self.consumer

    async def fetch(self) -> Optional[FeedMessage]:
        """Return the next buffered message, polling the broker when empty."""
        if not self._buffer:
            consumer = self._require_consumer()
            try:
                batch = await self._call(consumer.poll, timeout_ms=self.poll_timeout_ms)
            except KafkaError as e:
                raise TransientInfraError("Kafka poll failed", {"error": str(e)}) from e

            for records in (batch or {}).values():
                for record in records:
                    self._buffer.append(FeedMessage(
                        topic=record.topic,
                        partition=record.partition,
                        offset=record.offset,
                        value=record.value,
                        key=record.key,
                        timestamp=record.timestamp,
                    ))

        if not self._buffer:
            return None
        return self._buffer.popleft()

    async def commit(self, message: FeedMessage) -> None:
        """Commit the offset just past ``message``."""
        if not self.commit_after_persist:
            return
        consumer = self._require_consumer()
        offsets = {
            TopicPartition(message.topic, message.partition): OffsetAndMetadata(message.offset + 1, None, -1)
        }
        try:
            await self._call(consumer.commit, offsets)
        except KafkaError as e:
            # uncommitted messages are redelivered and absorbed by the existence check
            raise TransientInfraError("Kafka commit failed", {"error": str(e), "offset": message.offset}) from e

    async def rewind(self, message: FeedMessage) -> None:
        """Seek the partition back to ``message`` and drop what was buffered after it."""
        if not self.commit_after_persist:
            return
        consumer = self._require_consumer()
        self._buffer = deque(
            m for m in self._buffer
            if (m.topic, m.partition) != (message.topic, message.partition)
        )
        try:
            await self._call(consumer.seek, TopicPartition(message.topic, message.partition), message.offset)
        except (KafkaError, AssertionError) as e:
            # partition was revoked meanwhile; the new owner resumes from the last commit
            self.logger.warning("Kafka seek failed", error=str(e), offset=message.offset)
