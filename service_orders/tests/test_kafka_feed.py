"""
Unit tests for the Kafka order feed with a mocked consumer.
"""

from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock, patch
from kafka.errors import KafkaError
from kafka.structs import OffsetAndMetadata, TopicPartition

from service_orders.app.ingestion.ingestor import FeedMessage
from service_orders.app.ingestion.kafka_feed import KafkaOrderFeed
from shared.errors import ServiceError, TransientInfraError


def record(offset: int, partition: int = 0, value: bytes = b"{}"):
    return SimpleNamespace(
        topic="orders",
        partition=partition,
        offset=offset,
        value=value,
        key=None,
        timestamp=1700000000000 + offset,
    )


class TestKafkaOrderFeed:
    """Test cases for KafkaOrderFeed."""

    @pytest.fixture
    def consumer(self):
        consumer = MagicMock()
        consumer.poll.return_value = {}
        return consumer

    @pytest.fixture
    def consumer_cls(self, consumer):
        with patch("service_orders.app.ingestion.kafka_feed.kafka.KafkaConsumer", return_value=consumer) as cls:
            yield cls

    @pytest.mark.asyncio
    async def test_start_disables_auto_commit(self, consumer_cls):
        """Test that commit-after-persist turns off auto-commit."""
        feed = KafkaOrderFeed("localhost:9092", "orders", "order-service-group")

        await feed.start()

        args, kwargs = consumer_cls.call_args
        assert args == ("orders",)
        assert kwargs["enable_auto_commit"] is False
        assert kwargs["group_id"] == "order-service-group"
        assert kwargs["auto_offset_reset"] == "latest"
        await feed.stop()

    @pytest.mark.asyncio
    async def test_start_with_auto_commit(self, consumer_cls):
        """Test the at-most-once configuration."""
        feed = KafkaOrderFeed("localhost:9092", "orders", "g", commit_after_persist=False)

        await feed.start()

        assert consumer_cls.call_args.kwargs["enable_auto_commit"] is True
        await feed.stop()

    @pytest.mark.asyncio
    async def test_start_failure_is_service_error(self):
        """Test that an unreachable broker fails start."""
        with patch(
            "service_orders.app.ingestion.kafka_feed.kafka.KafkaConsumer",
            side_effect=KafkaError("NoBrokersAvailable"),
        ):
            feed = KafkaOrderFeed("localhost:9092", "orders", "g")
            with pytest.raises(ServiceError):
                await feed.start()

        assert feed.consumer is None

    @pytest.mark.asyncio
    async def test_fetch_buffers_a_batch(self, consumer_cls, consumer):
        """Test that one poll feeds several fetches in offset order."""
        consumer.poll.side_effect = [
            {TopicPartition("orders", 0): [record(5), record(6)]},
            {},
        ]
        feed = KafkaOrderFeed("localhost:9092", "orders", "g", poll_timeout_ms=250)
        await feed.start()

        first = await feed.fetch()
        second = await feed.fetch()
        third = await feed.fetch()

        assert (first.offset, second.offset) == (5, 6)
        assert third is None
        assert consumer.poll.call_count == 2
        consumer.poll.assert_called_with(timeout_ms=250)
        await feed.stop()

    @pytest.mark.asyncio
    async def test_poll_error_is_transient(self, consumer_cls, consumer):
        """Test that broker errors during poll are reported as transient."""
        consumer.poll.side_effect = KafkaError("broker down")
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")
        await feed.start()

        with pytest.raises(TransientInfraError):
            await feed.fetch()
        await feed.stop()

    @pytest.mark.asyncio
    async def test_fetch_before_start_is_transient(self):
        """Test that a feed without a consumer reports itself unavailable."""
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")

        with pytest.raises(TransientInfraError):
            await feed.fetch()

    @pytest.mark.asyncio
    async def test_commit_next_offset(self, consumer_cls, consumer):
        """Test that committing a message commits the offset after it."""
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")
        await feed.start()

        await feed.commit(FeedMessage(topic="orders", partition=3, offset=41, value=b"{}"))

        offsets = consumer.commit.call_args.args[0]
        assert offsets == {TopicPartition("orders", 3): OffsetAndMetadata(42, None, -1)}
        await feed.stop()

    @pytest.mark.asyncio
    async def test_commit_failure_is_transient(self, consumer_cls, consumer):
        """Test that a failed commit is reported as transient."""
        consumer.commit.side_effect = KafkaError("rebalance in progress")
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")
        await feed.start()

        with pytest.raises(TransientInfraError):
            await feed.commit(FeedMessage(topic="orders", partition=0, offset=1, value=b"{}"))
        await feed.stop()

    @pytest.mark.asyncio
    async def test_rewind_seeks_and_drops_partition_buffer(self, consumer_cls, consumer):
        """Test that rewinding refetches from the failed message."""
        consumer.poll.side_effect = [{
            TopicPartition("orders", 0): [record(10), record(11)],
            TopicPartition("orders", 1): [record(3, partition=1)],
        }]
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")
        await feed.start()

        failed = await feed.fetch()
        await feed.rewind(failed)

        consumer.seek.assert_called_once_with(TopicPartition("orders", 0), 10)
        remaining = await feed.fetch()
        assert (remaining.partition, remaining.offset) == (1, 3)
        await feed.stop()

    @pytest.mark.asyncio
    async def test_rewind_on_revoked_partition_only_warns(self, consumer_cls, consumer):
        """Test that a seek on a partition no longer assigned does not raise."""
        consumer.seek.side_effect = AssertionError("Unassigned partition")
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")
        await feed.start()

        await feed.rewind(FeedMessage(topic="orders", partition=0, offset=1, value=b"{}"))
        await feed.stop()

    @pytest.mark.asyncio
    async def test_commit_and_rewind_are_noops_with_auto_commit(self, consumer_cls, consumer):
        """Test that the at-most-once mode never touches offsets."""
        feed = KafkaOrderFeed("localhost:9092", "orders", "g", commit_after_persist=False)
        await feed.start()
        message = FeedMessage(topic="orders", partition=0, offset=1, value=b"{}")

        await feed.commit(message)
        await feed.rewind(message)

        consumer.commit.assert_not_called()
        consumer.seek.assert_not_called()
        await feed.stop()

    @pytest.mark.asyncio
    async def test_stop_closes_consumer(self, consumer_cls, consumer):
        """Test that stop closes the consumer once."""
        feed = KafkaOrderFeed("localhost:9092", "orders", "g")
        await feed.start()

        await feed.stop()
        await feed.stop()

        consumer.close.assert_called_once_with()
        assert feed.consumer is None
