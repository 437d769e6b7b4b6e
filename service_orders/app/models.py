"""
Order data models for the Order Cache Service.

Domain aggregates are frozen dataclasses: the cache hands the same instance
to every reader, so nobody may mutate them in place. Wire and response
schemas are pydantic models.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class Delivery:
    """Recipient details, one per order."""
    name: str
    phone: str
    zip: str = ""
    city: str = ""
    address: str = ""
    region: str = ""
    email: str = ""


@dataclass(frozen=True)
class Payment:
    """Payment details, one per order."""
    transaction: str
    currency: str
    amount: int
    request_id: str = ""
    provider: str = ""
    payment_dt: int = 0
    bank: str = ""
    delivery_cost: int = 0
    goods_total: int = 0
    custom_fee: int = 0


@dataclass(frozen=True)
class OrderItem:
    """Single line of an order."""
    chrt_id: int
    track_number: str
    price: int
    rid: str
    name: str
    sale: int = 0
    size: str = ""
    total_price: int = 0
    nm_id: int = 0
    brand: str = ""
    status: int = 0


@dataclass(frozen=True)
class OrderFull:
    """Order aggregate: the order row plus its delivery, payment and items."""
    order_uid: str
    track_number: str
    entry: str
    delivery: Delivery
    payment: Payment
    items: Tuple[OrderItem, ...]
    locale: str = ""
    internal_signature: str = ""
    customer_id: str = ""
    delivery_service: str = ""
    shardkey: str = ""
    sm_id: int = 0
    date_created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    oof_shard: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Wire-compatible representation."""
        data = asdict(self)
        data["items"] = [asdict(item) for item in self.items]
        data["date_created"] = self.date_created.isoformat()
        return data


class IngestOutcome(str, Enum):
    """Final outcome of one feed message."""
    STORED = "stored"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        """Whether the message is done with and its offset may be committed."""
        return self is not IngestOutcome.FAILED


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache statistics."""
    size: int
    capacity: int
    hits: int = 0
    misses: int = 0


# Wire schema ---------------------------------------------------------------

class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DeliveryMessage(_WireModel):
    """Delivery block of an incoming order message."""
    name: str = ""
    phone: str = ""
    zip: str = ""
    city: str = ""
    address: str = ""
    region: str = ""
    email: str = ""


class PaymentMessage(_WireModel):
    """Payment block of an incoming order message."""
    transaction: str = ""
    request_id: str = ""
    currency: str = ""
    provider: str = ""
    amount: int = 0
    payment_dt: int = 0
    bank: str = ""
    delivery_cost: int = 0
    goods_total: int = 0
    custom_fee: int = 0


class ItemMessage(_WireModel):
    """Item entry of an incoming order message."""
    chrt_id: int = 0
    track_number: str = ""
    price: int = 0
    rid: str = ""
    name: str = ""
    sale: int = 0
    size: str = ""
    total_price: int = 0
    nm_id: int = 0
    brand: str = ""
    status: int = 0


class OrderMessage(_WireModel):
    """Order event as published on the feed."""
    order_uid: str = ""
    track_number: str = ""
    entry: str = ""
    delivery: DeliveryMessage = Field(default_factory=DeliveryMessage)
    payment: PaymentMessage = Field(default_factory=PaymentMessage)
    items: List[ItemMessage] = Field(default_factory=list)
    locale: str = ""
    internal_signature: str = ""
    customer_id: str = ""
    delivery_service: str = ""
    shardkey: str = ""
    sm_id: int = 0
    date_created: str = ""
    oof_shard: str = ""


# API responses -------------------------------------------------------------

class APIResponse(BaseModel):
    """Response envelope for the order API."""
    success: bool = Field(..., description="Whether the request succeeded")
    data: Optional[Any] = Field(None, description="Response payload")
    error: Optional[str] = Field(None, description="Error description")
