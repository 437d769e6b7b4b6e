"""
Shared error handling for the Order Cache Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class OrderServiceException(Exception):
    """Base exception for Order Cache Service components."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(OrderServiceException):
    """Malformed or incomplete input."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class DuplicateOrderError(OrderServiceException):
    """Order is already stored; callers treat this as a successful no-op."""

    status_code = 409

    def __init__(self, order_uid: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("DUPLICATE_ORDER", f"Order {order_uid} already exists", details)
        self.order_uid = order_uid


class PersistenceError(OrderServiceException):
    """Durable store operation failed. No partial state is left behind."""

    status_code = 500

    def __init__(self, message: str = "Persistence failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_ERROR", message, details)


class TransientInfraError(OrderServiceException):
    """Message feed temporarily unavailable or timed out."""

    status_code = 503

    def __init__(self, message: str = "Transient infrastructure error", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_INFRA_ERROR", message, details)


class OrderNotFoundError(OrderServiceException):
    """Neither cache nor store holds the requested order."""

    status_code = 404

    def __init__(self, order_uid: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("ORDER_NOT_FOUND", "Order not found", details or {"order_uid": order_uid})
        self.order_uid = order_uid


class ServiceError(OrderServiceException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class RejectedOrderError(OrderServiceException):
    """Store refused the order's content; retrying the same message cannot succeed."""

    status_code = 422

    def __init__(self, order_uid: str, message: str = "Order rejected by store", details: Optional[Dict[str, Any]] = None):
        super().__init__("ORDER_REJECTED", message, details or {"order_uid": order_uid})
        self.order_uid = order_uid
