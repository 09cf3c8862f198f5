"""In-memory Order Store + Outbox Store.

Design invariants
-----------------
1.  Every write holds one ``asyncio.Lock``: an order mutation and its
    outbox event are applied together or not at all.
2.  ``commit_transition`` is a compare-and-swap on ``version``.
3.  Models are deep-copied in and out, so callers can never mutate stored
    state behind the store's back.
4.  ``claim_batch`` only hands out the oldest undelivered event of each
    order, which keeps delivery FIFO per order across relay workers.

Good for: unit tests, local development, single-process deployments
that accept losing state on restart.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from order_orchestrator.core.enums import DeliveryState
from order_orchestrator.core.errors import (
    FatalError,
    NotFoundError,
    VersionConflictError,
)
from order_orchestrator.core.models import Order, OrderFilter, OutboxEvent

logger = logging.getLogger(__name__)


class InMemoryOrderStore:
    """Dict-backed store implementing both IOrderStore and IOutboxStore."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._events: dict[str, OutboxEvent] = {}  # insertion == sequence order
        self._sequence = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Order Store
    # ------------------------------------------------------------------

    async def insert(self, order: Order, event: OutboxEvent) -> Order:
        async with self._lock:
            if order.id in self._orders:
                raise FatalError(f"Order id already exists: {order.id}")
            stored = order.model_copy(deep=True)
            self._orders[order.id] = stored
            self._append(event)
            logger.debug("Inserted order %s with event %s", order.id, event.id)
            return stored.model_copy(deep=True)

    async def commit_transition(
        self, order: Order, expected_version: int, event: OutboxEvent,
    ) -> Order:
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None:
                raise NotFoundError(order.id)
            if current.version != expected_version:
                raise VersionConflictError(order.id, expected_version, current.version)
            stored = order.model_copy(update={"version": expected_version + 1}, deep=True)
            self._orders[order.id] = stored
            self._append(event)
            logger.debug(
                "Committed order %s v%d -> v%d (%s)",
                order.id, expected_version, stored.version, stored.status.value,
            )
            return stored.model_copy(deep=True)

    async def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order is not None else None

    async def list(self, order_filter: OrderFilter | None = None) -> list[Order]:
        order_filter = order_filter or OrderFilter()
        matched = [o for o in reversed(self._orders.values()) if order_filter.matches(o)]
        matched.sort(key=lambda o: o.created_at, reverse=True)
        return [o.model_copy(deep=True) for o in matched]

    def _append(self, event: OutboxEvent) -> None:
        if event.id in self._events:
            raise FatalError(f"Outbox event id already exists: {event.id}")
        self._sequence += 1
        self._events[event.id] = event.model_copy(
            update={"sequence": self._sequence}, deep=True,
        )

    # ------------------------------------------------------------------
    # Outbox Store
    # ------------------------------------------------------------------

    async def claim_batch(
        self, worker_id: str, limit: int, now: datetime, lease: timedelta,
    ) -> list[OutboxEvent]:
        async with self._lock:
            seen_orders: set[str] = set()
            claimed: list[OutboxEvent] = []
            for event in self._events.values():
                if event.delivery_state == DeliveryState.DELIVERED:
                    continue
                if event.order_id in seen_orders:
                    continue
                seen_orders.add(event.order_id)  # later events wait for the head
                if not event.is_due(now) or event.is_leased(now):
                    continue
                event.claimed_by = worker_id
                event.claimed_until = now + lease
                claimed.append(event.model_copy(deep=True))
                if len(claimed) >= limit:
                    break
            return claimed

    async def mark_delivered(self, event_id: str, worker_id: str, now: datetime) -> bool:
        async with self._lock:
            event = self._owned(event_id, worker_id)
            if event is None:
                return False
            event.delivery_state = DeliveryState.DELIVERED
            event.delivered_at = now
            event.next_retry_at = None
            event.last_error = None
            event.claimed_by = None
            event.claimed_until = None
            return True

    async def mark_failed(
        self,
        event_id: str,
        worker_id: str,
        attempts: int,
        next_retry_at: datetime | None,
        error: str,
    ) -> bool:
        async with self._lock:
            event = self._owned(event_id, worker_id)
            if event is None:
                return False
            event.delivery_state = DeliveryState.FAILED
            event.attempts = attempts
            event.next_retry_at = next_retry_at
            event.last_error = error
            event.claimed_by = None
            event.claimed_until = None
            return True

    async def release(self, event_id: str, worker_id: str) -> bool:
        async with self._lock:
            event = self._owned(event_id, worker_id)
            if event is None:
                return False
            event.claimed_by = None
            event.claimed_until = None
            return True

    async def events_for_order(self, order_id: str) -> list[OutboxEvent]:
        return [
            e.model_copy(deep=True)
            for e in self._events.values()
            if e.order_id == order_id
        ]

    async def pending_count(self) -> int:
        return sum(
            1 for e in self._events.values()
            if e.delivery_state != DeliveryState.DELIVERED
        )

    async def list_failed(self) -> list[OutboxEvent]:
        return [
            e.model_copy(deep=True)
            for e in self._events.values()
            if e.delivery_state == DeliveryState.FAILED
        ]

    async def requeue(self, event_id: str) -> bool:
        async with self._lock:
            event = self._events.get(event_id)
            if event is None or event.delivery_state != DeliveryState.FAILED:
                return False
            event.delivery_state = DeliveryState.PENDING
            event.attempts = 0
            event.next_retry_at = None
            event.claimed_by = None
            event.claimed_until = None
            logger.info("Requeued outbox event %s", event_id)
            return True

    def _owned(self, event_id: str, worker_id: str) -> OutboxEvent | None:
        event = self._events.get(event_id)
        if event is None or event.claimed_by != worker_id:
            logger.warning(
                "Worker %s no longer owns outbox event %s", worker_id, event_id,
            )
            return None
        return event
