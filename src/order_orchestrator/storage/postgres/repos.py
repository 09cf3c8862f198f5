"""SQL Order Store + Outbox Store.

``SqlOrderStore`` implements both IOrderStore and IOutboxStore on one
database.  Every write runs in a single transaction so an order mutation
and its outbox row commit together or not at all.

Conversion helpers translate between core domain models
(:mod:`order_orchestrator.core.models`) and ORM records.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.orm import aliased

from order_orchestrator.core.enums import DeliveryState, OrderStatus, OutboxEventType
from order_orchestrator.core.errors import (
    FatalError,
    NotFoundError,
    TransientError,
    ValidationError,
    VersionConflictError,
)
from order_orchestrator.core.ids import ensure_utc
from order_orchestrator.core.models import Order, OrderFilter, OrderItem, OutboxEvent

from .connection import create_all, create_engine, create_session_factory, session_scope
from .models import OrderItemRecord, OrderRecord, OutboxRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def _order_to_record(order: Order) -> OrderRecord:
    """Convert a core :class:`Order` to an ORM :class:`OrderRecord`."""
    return OrderRecord(
        id=order.id,
        client_id=order.client_id,
        status=order.status.value,
        total_amount=order.total_amount,
        shipping_address=order.shipping_address,
        tracking_number=order.tracking_number,
        cancellation_reason=order.cancellation_reason,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemRecord(
                id=item.id,
                position=position,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
            )
            for position, item in enumerate(order.items)
        ],
    )


def _record_to_order(record: OrderRecord) -> Order:
    """Convert an ORM :class:`OrderRecord` back to a core :class:`Order`."""
    try:
        status = OrderStatus.parse(record.status)
    except ValidationError as exc:
        raise FatalError(f"Order {record.id} has corrupt status {record.status!r}") from exc
    return Order(
        id=record.id,
        client_id=record.client_id,
        status=status,
        items=[
            OrderItem(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
            )
            for item in record.items
        ],
        total_amount=record.total_amount,
        shipping_address=record.shipping_address,
        tracking_number=record.tracking_number,
        cancellation_reason=record.cancellation_reason,
        version=record.version,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def _event_to_record(event: OutboxEvent) -> OutboxRecord:
    return OutboxRecord(
        event_id=event.id,
        order_id=event.order_id,
        event_type=event.event_type.value,
        payload=event.payload,
        created_at=event.created_at,
        delivery_state=event.delivery_state.value,
        attempts=event.attempts,
        next_retry_at=event.next_retry_at,
    )


def _record_to_event(record: OutboxRecord) -> OutboxEvent:
    return OutboxEvent(
        id=record.event_id,
        order_id=record.order_id,
        event_type=OutboxEventType(record.event_type),
        payload=dict(record.payload),
        created_at=ensure_utc(record.created_at),
        delivery_state=DeliveryState(record.delivery_state),
        attempts=record.attempts,
        next_retry_at=_utc_or_none(record.next_retry_at),
        sequence=record.sequence,
        claimed_by=record.claimed_by,
        claimed_until=_utc_or_none(record.claimed_until),
        last_error=record.last_error,
        delivered_at=_utc_or_none(record.delivered_at),
    )


def _utc_or_none(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


# ---------------------------------------------------------------------------
# SqlOrderStore
# ---------------------------------------------------------------------------

class SqlOrderStore:
    """Order Store and Outbox Store backed by SQLAlchemy async sessions.

    Args:
        engine: Async engine; see :func:`SqlOrderStore.from_url`.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = create_session_factory(engine)

    @classmethod
    async def from_url(
        cls,
        url: str,
        *,
        pool_size: int = 5,
        create_tables: bool = False,
    ) -> SqlOrderStore:
        engine = create_engine(url, pool_size=pool_size)
        if create_tables:
            await create_all(engine)
        return cls(engine)

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Order store engine disposed.")

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """One transaction; driver failures surface as TransientError."""
        try:
            async with session_scope(self._sessions) as session:
                yield session
        except IntegrityError as exc:
            raise FatalError(f"Integrity violation: {exc.orig}") from exc
        except (DBAPIError, TimeoutError, OSError) as exc:
            raise TransientError(f"Order store unavailable: {exc}") from exc
        except SQLAlchemyError as exc:
            raise FatalError(f"Order store error: {exc}") from exc

    # ------------------------------------------------------------------
    # Order Store
    # ------------------------------------------------------------------

    async def insert(self, order: Order, event: OutboxEvent) -> Order:
        async with self._transaction() as session:
            session.add(_order_to_record(order))
            session.add(_event_to_record(event))
            await session.flush()
        logger.debug("Inserted order %s with event %s", order.id, event.id)
        return order.model_copy(deep=True)

    async def commit_transition(
        self, order: Order, expected_version: int, event: OutboxEvent,
    ) -> Order:
        new_version = expected_version + 1
        async with self._transaction() as session:
            result = await session.execute(
                update(OrderRecord)
                .where(
                    OrderRecord.id == order.id,
                    OrderRecord.version == expected_version,
                )
                .values(
                    status=order.status.value,
                    tracking_number=order.tracking_number,
                    cancellation_reason=order.cancellation_reason,
                    version=new_version,
                    updated_at=order.updated_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                actual = await session.scalar(
                    select(OrderRecord.version).where(OrderRecord.id == order.id)
                )
                if actual is None:
                    raise NotFoundError(order.id)
                raise VersionConflictError(order.id, expected_version, actual)
            session.add(_event_to_record(event))
        logger.debug(
            "Committed order %s v%d -> v%d (%s)",
            order.id, expected_version, new_version, order.status.value,
        )
        return order.model_copy(update={"version": new_version}, deep=True)

    async def get(self, order_id: str) -> Order | None:
        async with self._transaction() as session:
            record = await session.scalar(
                select(OrderRecord).where(OrderRecord.id == order_id)
            )
            return _record_to_order(record) if record is not None else None

    async def list(self, order_filter: OrderFilter | None = None) -> list[Order]:
        order_filter = order_filter or OrderFilter()
        stmt = select(OrderRecord)
        if order_filter.order_id is not None:
            stmt = stmt.where(OrderRecord.id == order_filter.order_id)
        if order_filter.client_id is not None:
            stmt = stmt.where(OrderRecord.client_id == order_filter.client_id)
        lower = order_filter.lower_bound()
        if lower is not None:
            stmt = stmt.where(OrderRecord.created_at >= lower)
        upper = order_filter.upper_bound()
        if upper is not None:
            stmt = stmt.where(OrderRecord.created_at < upper)
        stmt = stmt.order_by(OrderRecord.created_at.desc())

        async with self._transaction() as session:
            records = (await session.scalars(stmt)).all()
            return [_record_to_order(r) for r in records]

    # ------------------------------------------------------------------
    # Outbox Store
    # ------------------------------------------------------------------

    async def claim_batch(
        self, worker_id: str, limit: int, now: datetime, lease: timedelta,
    ) -> list[OutboxEvent]:
        """Lease up to ``limit`` due events, at most the head of each order.

        ``FOR UPDATE SKIP LOCKED`` lets concurrent relays claim disjoint
        rows; the head check keeps an order's later events unclaimable
        until every earlier one is delivered.
        """
        earlier = aliased(OutboxRecord)
        is_head = ~exists().where(
            earlier.order_id == OutboxRecord.order_id,
            earlier.sequence < OutboxRecord.sequence,
            earlier.delivery_state != DeliveryState.DELIVERED.value,
        )
        is_due = or_(
            OutboxRecord.delivery_state == DeliveryState.PENDING.value,
            and_(
                OutboxRecord.delivery_state == DeliveryState.FAILED.value,
                OutboxRecord.next_retry_at.is_not(None),
                OutboxRecord.next_retry_at <= now,
            ),
        )
        not_leased = or_(
            OutboxRecord.claimed_until.is_(None),
            OutboxRecord.claimed_until <= now,
        )
        stmt = (
            select(OutboxRecord)
            .where(is_head, is_due, not_leased)
            .order_by(OutboxRecord.sequence)
            .limit(limit)
            .with_for_update(skip_locked=True, of=OutboxRecord)
        )

        async with self._transaction() as session:
            records = (await session.scalars(stmt)).all()
            for record in records:
                record.claimed_by = worker_id
                record.claimed_until = now + lease
            await session.flush()
            return [_record_to_event(r) for r in records]

    async def mark_delivered(self, event_id: str, worker_id: str, now: datetime) -> bool:
        return await self._update_owned(
            event_id,
            worker_id,
            delivery_state=DeliveryState.DELIVERED.value,
            delivered_at=now,
            next_retry_at=None,
            last_error=None,
            claimed_by=None,
            claimed_until=None,
        )

    async def mark_failed(
        self,
        event_id: str,
        worker_id: str,
        attempts: int,
        next_retry_at: datetime | None,
        error: str,
    ) -> bool:
        return await self._update_owned(
            event_id,
            worker_id,
            delivery_state=DeliveryState.FAILED.value,
            attempts=attempts,
            next_retry_at=next_retry_at,
            last_error=error,
            claimed_by=None,
            claimed_until=None,
        )

    async def release(self, event_id: str, worker_id: str) -> bool:
        return await self._update_owned(
            event_id, worker_id, claimed_by=None, claimed_until=None,
        )

    async def events_for_order(self, order_id: str) -> list[OutboxEvent]:
        async with self._transaction() as session:
            records = (
                await session.scalars(
                    select(OutboxRecord)
                    .where(OutboxRecord.order_id == order_id)
                    .order_by(OutboxRecord.sequence)
                )
            ).all()
            return [_record_to_event(r) for r in records]

    async def pending_count(self) -> int:
        async with self._transaction() as session:
            count = await session.scalar(
                select(func.count()).select_from(OutboxRecord).where(
                    OutboxRecord.delivery_state != DeliveryState.DELIVERED.value
                )
            )
            return int(count or 0)

    async def list_failed(self) -> list[OutboxEvent]:
        async with self._transaction() as session:
            records = (
                await session.scalars(
                    select(OutboxRecord)
                    .where(OutboxRecord.delivery_state == DeliveryState.FAILED.value)
                    .order_by(OutboxRecord.sequence)
                )
            ).all()
            return [_record_to_event(r) for r in records]

    async def requeue(self, event_id: str) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                update(OutboxRecord)
                .where(
                    OutboxRecord.event_id == event_id,
                    OutboxRecord.delivery_state == DeliveryState.FAILED.value,
                )
                .values(
                    delivery_state=DeliveryState.PENDING.value,
                    attempts=0,
                    next_retry_at=None,
                    claimed_by=None,
                    claimed_until=None,
                )
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("Requeued outbox event %s", event_id)
            return True
        return False

    async def _update_owned(self, event_id: str, worker_id: str, **values: object) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                update(OutboxRecord)
                .where(
                    OutboxRecord.event_id == event_id,
                    OutboxRecord.claimed_by == worker_id,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 0:
            logger.warning(
                "Worker %s no longer owns outbox event %s", worker_id, event_id,
            )
            return False
        return True
