"""
Decoding and validation of order messages.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

import pydantic
import structlog

from shared.errors import ValidationError
from shared.logging import get_logger
from ..models import Delivery, OrderFull, OrderItem, OrderMessage, Payment


def decode_order_message(payload: Union[bytes, str]) -> OrderMessage:
    """Parse raw JSON into the wire schema."""
    try:
        return OrderMessage.model_validate_json(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Failed to decode order message",
            {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


def _blank(value: str) -> bool:
    return not value or not value.strip()


def validate_order_message(message: OrderMessage) -> None:
    """Check required fields; raises ValidationError listing every problem."""
    problems: List[str] = []

    if _blank(message.order_uid):
        problems.append("order_uid is required")
    if _blank(message.track_number):
        problems.append("track_number is required")
    if _blank(message.customer_id):
        problems.append("customer_id is required")
    if not message.items:
        problems.append("items are required")

    if _blank(message.delivery.name):
        problems.append("delivery name is required")
    if _blank(message.delivery.phone):
        problems.append("delivery phone is required")

    payment = message.payment
    if payment.amount <= 0:
        problems.append("payment amount must be positive")
    if _blank(payment.currency):
        problems.append("payment currency is required")
    for name in ("delivery_cost", "goods_total", "custom_fee"):
        if getattr(payment, name) < 0:
            problems.append(f"payment {name} must not be negative")

    for index, item in enumerate(message.items):
        if item.price < 0 or item.total_price < 0:
            problems.append(f"item {index} amounts must not be negative")

    if problems:
        raise ValidationError(
            f"Message validation failed: {problems[0]}",
            {"order_uid": message.order_uid, "problems": problems},
        )


def parse_date_created(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        # fromisoformat only accepts the "Z" suffix from 3.11 on
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_order(
    message: OrderMessage,
    *,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    logger: Optional[structlog.BoundLogger] = None,
) -> OrderFull:
    """Convert a validated message into the order aggregate."""
    date_created = parse_date_created(message.date_created)
    if date_created is None:
        date_created = now()
        (logger or get_logger("orders.ingestion.validation")).warning(
            "Failed to parse date, using current time",
            order_uid=message.order_uid,
            date=message.date_created,
        )

    delivery = message.delivery
    payment = message.payment

    return OrderFull(
        order_uid=message.order_uid,
        track_number=message.track_number,
        entry=message.entry,
        delivery=Delivery(
            name=delivery.name,
            phone=delivery.phone,
            zip=delivery.zip,
            city=delivery.city,
            address=delivery.address,
            region=delivery.region,
            email=delivery.email,
        ),
        payment=Payment(
            transaction=payment.transaction,
            request_id=payment.request_id,
            currency=payment.currency,
            provider=payment.provider,
            amount=payment.amount,
            payment_dt=payment.payment_dt,
            bank=payment.bank,
            delivery_cost=payment.delivery_cost,
            goods_total=payment.goods_total,
            custom_fee=payment.custom_fee,
        ),
        items=tuple(
            OrderItem(
                chrt_id=item.chrt_id,
                track_number=item.track_number,
                price=item.price,
                rid=item.rid,
                name=item.name,
                sale=item.sale,
                size=item.size,
                total_price=item.total_price,
                nm_id=item.nm_id,
                brand=item.brand,
                status=item.status,
            )
            for item in message.items
        ),
        locale=message.locale,
        internal_signature=message.internal_signature,
        customer_id=message.customer_id,
        delivery_service=message.delivery_service,
        shardkey=message.shardkey,
        sm_id=message.sm_id,
        date_created=date_created,
        oof_shard=message.oof_shard,
    )


def parse_order(
    payload: Union[bytes, str],
    *,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    logger: Optional[structlog.BoundLogger] = None,
) -> OrderFull:
    """Decode, validate and normalize one feed payload."""
    message = decode_order_message(payload)
    validate_order_message(message)
    return to_order(message, now=now, logger=logger)
