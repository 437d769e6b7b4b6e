"""
Unit tests for structured logging context.
"""

import pytest
from structlog.testing import capture_logs

from shared.logging import (
    add_correlation_context,
    add_service_context,
    clear_context,
    component_of,
    get_logger,
    set_order_context,
    set_request_id,
)


@pytest.fixture(autouse=True)
def clean_context():
    clear_context()
    yield
    clear_context()


def test_component_of():
    assert component_of("orders.cache.lru") == "cache.lru"
    assert component_of("orders") == "orders"


def test_logger_binds_component():
    """Test that events carry the component named by the logger."""
    with capture_logs() as logs:
        get_logger("orders.ingestion.loop").info("Ingestion loop started")
        get_logger("orders.reader", component="lookup").info("Order found in cache")

    assert logs[0]["component"] == "ingestion.loop"
    assert logs[1]["component"] == "lookup"


def test_service_taken_from_logger_name():
    event = add_service_context(None, "info", {"event": "x", "logger": "orders.cache.lru"})
    assert event["service"] == "orders"


def test_correlation_context():
    """Test that request and order ids are added without overriding explicit fields."""
    request_id = set_request_id("req-1")
    set_order_context("order-1")

    event = add_correlation_context(None, "info", {"event": "x"})
    explicit = add_correlation_context(None, "info", {"event": "x", "order_uid": "order-2"})

    assert request_id == "req-1"
    assert event["request_id"] == "req-1"
    assert event["order_uid"] == "order-1"
    assert explicit["order_uid"] == "order-2"


def test_cleared_context_adds_nothing():
    set_order_context("order-1")
    set_order_context(None)

    assert add_correlation_context(None, "info", {"event": "x"}) == {"event": "x"}
