"""
PostgreSQL persistence layer for the Orders Service.
"""

import asyncio
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

import asyncpg
import structlog

from shared.errors import DuplicateOrderError, PersistenceError, RejectedOrderError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_on_exception
from .base import OrderStore
from ..models import Delivery, OrderFull, OrderItem, Payment


# Driver failures that leave the store unusable for the current call
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS orders (
        order_uid VARCHAR(255) PRIMARY KEY,
        seq BIGSERIAL NOT NULL,
        track_number VARCHAR(255) NOT NULL,
        entry VARCHAR(255) NOT NULL DEFAULT '',
        locale VARCHAR(16) NOT NULL DEFAULT '',
        internal_signature VARCHAR(255) NOT NULL DEFAULT '',
        customer_id VARCHAR(255) NOT NULL,
        delivery_service VARCHAR(255) NOT NULL DEFAULT '',
        shardkey VARCHAR(64) NOT NULL DEFAULT '',
        sm_id INTEGER NOT NULL DEFAULT 0,
        date_created TIMESTAMP WITH TIME ZONE NOT NULL,
        oof_shard VARCHAR(64) NOT NULL DEFAULT '',
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS deliveries (
        order_uid VARCHAR(255) PRIMARY KEY REFERENCES orders(order_uid),
        name VARCHAR(255) NOT NULL,
        phone VARCHAR(64) NOT NULL,
        zip VARCHAR(32) NOT NULL DEFAULT '',
        city VARCHAR(255) NOT NULL DEFAULT '',
        address TEXT NOT NULL DEFAULT '',
        region VARCHAR(255) NOT NULL DEFAULT '',
        email VARCHAR(255) NOT NULL DEFAULT ''
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        order_uid VARCHAR(255) PRIMARY KEY REFERENCES orders(order_uid),
        transaction VARCHAR(255) NOT NULL DEFAULT '',
        request_id VARCHAR(255) NOT NULL DEFAULT '',
        currency VARCHAR(16) NOT NULL,
        provider VARCHAR(255) NOT NULL DEFAULT '',
        amount BIGINT NOT NULL CHECK (amount >= 0),
        payment_dt BIGINT NOT NULL DEFAULT 0,
        bank VARCHAR(255) NOT NULL DEFAULT '',
        delivery_cost BIGINT NOT NULL DEFAULT 0 CHECK (delivery_cost >= 0),
        goods_total BIGINT NOT NULL DEFAULT 0 CHECK (goods_total >= 0),
        custom_fee BIGINT NOT NULL DEFAULT 0 CHECK (custom_fee >= 0)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id BIGSERIAL PRIMARY KEY,
        order_uid VARCHAR(255) NOT NULL REFERENCES orders(order_uid),
        chrt_id BIGINT NOT NULL,
        track_number VARCHAR(255) NOT NULL DEFAULT '',
        price BIGINT NOT NULL DEFAULT 0,
        rid VARCHAR(255) NOT NULL DEFAULT '',
        name VARCHAR(255) NOT NULL DEFAULT '',
        sale INTEGER NOT NULL DEFAULT 0,
        size VARCHAR(64) NOT NULL DEFAULT '',
        total_price BIGINT NOT NULL DEFAULT 0,
        nm_id BIGINT NOT NULL DEFAULT 0,
        brand VARCHAR(255) NOT NULL DEFAULT '',
        status INTEGER NOT NULL DEFAULT 0
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at DESC, seq DESC);",
    "CREATE INDEX IF NOT EXISTS idx_order_items_order_uid ON order_items(order_uid, id);",
)

ORDER_COLUMNS = (
    "order_uid, track_number, entry, locale, internal_signature, customer_id, "
    "delivery_service, shardkey, sm_id, date_created, oof_shard"
)
DELIVERY_COLUMNS = "order_uid, name, phone, zip, city, address, region, email"
PAYMENT_COLUMNS = (
    "order_uid, transaction, request_id, currency, provider, amount, payment_dt, "
    "bank, delivery_cost, goods_total, custom_fee"
)
ITEM_COLUMNS = (
    "order_uid, chrt_id, track_number, price, rid, name, sale, size, "
    "total_price, nm_id, brand, status"
)


class PostgreSQLOrderStore(OrderStore):
    """Order store backed by four related PostgreSQL tables."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 25,
        timeout: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.metrics = metrics
        self.logger = logger or get_logger("orders.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self._connect_lock = asyncio.Lock()
        self._stopped = False

    async def start(self):
        """Start the persistence layer.

        A failed start is not final: every later call tries to connect
        again, so the store recovers once the database is reachable.
        """
        self._stopped = False
        try:
            await self._connect_with_retry()
            self.logger.info("PostgreSQL order store started", max_pool=self.max_size)
        except (RetryError, *STORE_ERRORS) as e:
            self.logger.error("Failed to start PostgreSQL order store", error=str(e))
            raise PersistenceError("Failed to start PostgreSQL order store", {"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        self._stopped = True
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL order store stopped")

    @retry_on_exception(STORE_ERRORS, RetryConfig(max_attempts=3, base_delay=1.0, max_delay=5.0))
    async def _connect_with_retry(self):
        await self._connect()

    async def _connect(self):
        """Open the pool and make sure the schema exists."""
        pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.timeout,
        )
        try:
            async with pool.acquire(timeout=self.timeout) as conn:
                for statement in SCHEMA:
                    await conn.execute(statement)
        except STORE_ERRORS:
            await pool.close()
            raise
        self.pool = pool

    @contextmanager
    def _timed(self, operation: str) -> Iterator[None]:
        if self.metrics is None:
            yield
            return
        with self.metrics.time_operation("store_operation_duration_seconds", operation=operation):
            yield

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self.pool is not None:
            return self.pool
        if self._stopped:
            raise PersistenceError("PostgreSQL order store is stopped")

        async with self._connect_lock:
            if self.pool is None:
                try:
                    await self._connect()
                except STORE_ERRORS as e:
                    raise PersistenceError("PostgreSQL order store is unavailable", {"error": str(e)}) from e
                self.logger.info("PostgreSQL order store connected", max_pool=self.max_size)
        return self.pool

    async def create_order(self, order: OrderFull) -> None:
        """Save an order and its parts in one transaction."""
        pool = await self._ensure_pool()
        try:
            with self._timed("create_order"):
                async with pool.acquire(timeout=self.timeout) as conn:
                    async with conn.transaction():
                        await conn.execute(
                            f"INSERT INTO orders ({ORDER_COLUMNS}) "
                            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                            order.order_uid, order.track_number, order.entry, order.locale,
                            order.internal_signature, order.customer_id, order.delivery_service,
                            order.shardkey, order.sm_id, order.date_created, order.oof_shard,
                        )

                        delivery = order.delivery
                        await conn.execute(
                            f"INSERT INTO deliveries ({DELIVERY_COLUMNS}) "
                            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
                            order.order_uid, delivery.name, delivery.phone, delivery.zip,
                            delivery.city, delivery.address, delivery.region, delivery.email,
                        )

                        payment = order.payment
                        await conn.execute(
                            f"INSERT INTO payments ({PAYMENT_COLUMNS}) "
                            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)",
                            order.order_uid, payment.transaction, payment.request_id,
                            payment.currency, payment.provider, payment.amount,
                            payment.payment_dt, payment.bank, payment.delivery_cost,
                            payment.goods_total, payment.custom_fee,
                        )

                        await conn.executemany(
                            f"INSERT INTO order_items ({ITEM_COLUMNS}) "
                            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)",
                            [
                                (
                                    order.order_uid, item.chrt_id, item.track_number, item.price,
                                    item.rid, item.name, item.sale, item.size, item.total_price,
                                    item.nm_id, item.brand, item.status,
                                )
                                for item in order.items
                            ],
                        )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateOrderError(order.order_uid) from e
        except (asyncpg.DataError, asyncpg.IntegrityConstraintViolationError) as e:
            # value too long, out of range, NUL byte, failed CHECK: fails the same way every time
            self.logger.error("Order rejected by store", order_uid=order.order_uid, error=str(e))
            raise RejectedOrderError(
                order.order_uid,
                "Order rejected by store",
                {"order_uid": order.order_uid, "error": str(e)},
            ) from e
        except STORE_ERRORS as e:
            self.logger.error("Error saving order", order_uid=order.order_uid, error=str(e))
            raise PersistenceError(
                "Failed to save order",
                {"order_uid": order.order_uid, "error": str(e)},
            ) from e

        self.logger.info("Order saved", order_uid=order.order_uid, items=len(order.items))

    async def get_by_key(self, order_uid: str) -> Optional[OrderFull]:
        """Load a full order by key."""
        orders = await self._load_orders([order_uid], "get_by_key")
        return orders.get(order_uid)

    async def exists(self, order_uid: str) -> bool:
        """Check whether an order is stored."""
        pool = await self._ensure_pool()
        try:
            with self._timed("exists"):
                async with pool.acquire(timeout=self.timeout) as conn:
                    return bool(await conn.fetchval(
                        "SELECT EXISTS(SELECT 1 FROM orders WHERE order_uid = $1)", order_uid
                    ))
        except STORE_ERRORS as e:
            self.logger.error("Error checking order existence", order_uid=order_uid, error=str(e))
            raise PersistenceError(
                "Failed to check order existence",
                {"order_uid": order_uid, "error": str(e)},
            ) from e

    async def get_recent(self, limit: int) -> List[OrderFull]:
        """Load the most recently created orders, newest first."""
        if limit <= 0:
            return []
        pool = await self._ensure_pool()
        try:
            with self._timed("get_recent"):
                async with pool.acquire(timeout=self.timeout) as conn:
                    rows = await conn.fetch(
                        "SELECT order_uid FROM orders ORDER BY created_at DESC, seq DESC LIMIT $1",
                        limit,
                    )
        except STORE_ERRORS as e:
            self.logger.error("Error listing recent orders", limit=limit, error=str(e))
            raise PersistenceError("Failed to list recent orders", {"error": str(e)}) from e

        order_uids = [row["order_uid"] for row in rows]
        orders = await self._load_orders(order_uids, "get_recent")
        return [orders[uid] for uid in order_uids if uid in orders]

    async def _load_orders(self, order_uids: List[str], operation: str) -> Dict[str, OrderFull]:
        """Assemble aggregates for a batch of keys with one query per table."""
        if not order_uids:
            return {}
        pool = await self._ensure_pool()
        try:
            with self._timed(operation):
                async with pool.acquire(timeout=self.timeout) as conn:
                    async with conn.transaction(readonly=True):
                        order_rows = await conn.fetch(
                            f"SELECT {ORDER_COLUMNS} FROM orders WHERE order_uid = ANY($1::varchar[])",
                            order_uids,
                        )
                        if not order_rows:
                            return {}
                        delivery_rows = await conn.fetch(
                            f"SELECT {DELIVERY_COLUMNS} FROM deliveries WHERE order_uid = ANY($1::varchar[])",
                            order_uids,
                        )
                        payment_rows = await conn.fetch(
                            f"SELECT {PAYMENT_COLUMNS} FROM payments WHERE order_uid = ANY($1::varchar[])",
                            order_uids,
                        )
                        item_rows = await conn.fetch(
                            f"SELECT {ITEM_COLUMNS} FROM order_items "
                            "WHERE order_uid = ANY($1::varchar[]) ORDER BY order_uid, id",
                            order_uids,
                        )
        except STORE_ERRORS as e:
            self.logger.error("Error loading orders", count=len(order_uids), error=str(e))
            raise PersistenceError("Failed to load orders", {"error": str(e)}) from e

        deliveries = {row["order_uid"]: self._row_to_delivery(row) for row in delivery_rows}
        payments = {row["order_uid"]: self._row_to_payment(row) for row in payment_rows}
        items: Dict[str, List[OrderItem]] = {}
        for row in item_rows:
            items.setdefault(row["order_uid"], []).append(self._row_to_item(row))

        orders = {}
        for row in order_rows:
            uid = row["order_uid"]
            if uid not in deliveries or uid not in payments:
                # only reachable if rows were written outside this store
                self.logger.warning("Order is missing delivery or payment", order_uid=uid)
                continue
            orders[uid] = self._row_to_order(row, deliveries[uid], payments[uid], items.get(uid, []))
        return orders

    def _row_to_order(self, row, delivery: Delivery, payment: Payment, items: List[OrderItem]) -> OrderFull:
        """Convert database rows to an OrderFull aggregate."""
        return OrderFull(
            order_uid=row["order_uid"],
            track_number=row["track_number"],
            entry=row["entry"],
            delivery=delivery,
            payment=payment,
            items=tuple(items),
            locale=row["locale"],
            internal_signature=row["internal_signature"],
            customer_id=row["customer_id"],
            delivery_service=row["delivery_service"],
            shardkey=row["shardkey"],
            sm_id=row["sm_id"],
            date_created=row["date_created"],
            oof_shard=row["oof_shard"],
        )

    def _row_to_delivery(self, row) -> Delivery:
        return Delivery(
            name=row["name"],
            phone=row["phone"],
            zip=row["zip"],
            city=row["city"],
            address=row["address"],
            region=row["region"],
            email=row["email"],
        )

    def _row_to_payment(self, row) -> Payment:
        return Payment(
            transaction=row["transaction"],
            request_id=row["request_id"],
            currency=row["currency"],
            provider=row["provider"],
            amount=row["amount"],
            payment_dt=row["payment_dt"],
            bank=row["bank"],
            delivery_cost=row["delivery_cost"],
            goods_total=row["goods_total"],
            custom_fee=row["custom_fee"],
        )

    def _row_to_item(self, row) -> OrderItem:
        return OrderItem(
            chrt_id=row["chrt_id"],
            track_number=row["track_number"],
            price=row["price"],
            rid=row["rid"],
            name=row["name"],
            sale=row["sale"],
            size=row["size"],
            total_price=row["total_price"],
            nm_id=row["nm_id"],
            brand=row["brand"],
            status=row["status"],
        )

    async def health_check(self) -> bool:
        """Check database health, reconnecting if the pool is gone."""
        try:
            pool = await self._ensure_pool()
        except PersistenceError:
            return False
        try:
            async with pool.acquire(timeout=self.timeout) as conn:
                await conn.fetchval("SELECT 1")
                return True
        except STORE_ERRORS:
            return False
