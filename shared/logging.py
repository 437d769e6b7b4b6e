"""
Shared logging configuration for the Order Cache Service.

Loggers are named ``<service>.<component>`` (for example
``orders.ingestion.loop``); both parts end up as fields of every event, next
to the request id of the HTTP call or the order currently being ingested.
"""

import sys
import structlog
import logging
import uuid
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
order_uid_var: ContextVar[Optional[str]] = ContextVar('order_uid', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def component_of(name: str) -> str:
    """Component part of a dotted logger name: ``orders.cache.lru`` -> ``cache.lru``."""
    _, _, component = name.partition(".")
    return component or name


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the service name taken from the logger name."""
    logger_name = event_dict.get("logger", "")
    if logger_name:
        event_dict.setdefault("service", logger_name.split(".")[0])
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add request and order correlation to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    order_uid = order_uid_var.get()
    if order_uid and "order_uid" not in event_dict:
        event_dict["order_uid"] = order_uid

    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_order_context(order_uid: Optional[str]) -> None:
    """Bind the order currently being processed to the logging context."""
    order_uid_var.set(order_uid)


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)
    order_uid_var.set(None)


def get_logger(name: str, **initial_values: Any) -> structlog.BoundLogger:
    """Structured logger with ``component`` bound from its dotted name."""
    initial_values.setdefault("component", component_of(name))
    return structlog.get_logger(name, **initial_values)
