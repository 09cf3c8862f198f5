"""Outbox Relay: ships committed outbox events to the broker.

Each pass claims a batch under a time-bounded lease, publishes every
claimed event and records the outcome.  Delivery is at-least-once: an
event whose acknowledgment was lost is published again with the same
``event_id``, so consumers de-duplicate on it.

Ordering is per order.  The store only hands out the oldest undelivered
event of each order, so a failing event holds back the later events of
its own order and nothing else.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from dataclasses import dataclass
from datetime import timedelta

from pydantic import ValidationError as PydanticValidationError

from order_orchestrator.bus.schemas import route_for
from order_orchestrator.core.clock import IClock, WallClock
from order_orchestrator.core.config import RelayConfig
from order_orchestrator.core.interfaces import IEventBus, IOutboxStore
from order_orchestrator.core.models import OutboxEvent
from order_orchestrator.observability.logger import trace
from order_orchestrator.observability.metrics import (
    OUTBOX_BACKLOG,
    RELAY_DELIVERED_TOTAL,
    RELAY_FAILURES_TOTAL,
    RELAY_GIVEN_UP_TOTAL,
)

from .backoff import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class RelayStats:
    """Outcome counts of one relay pass."""

    claimed: int = 0
    delivered: int = 0
    failed: int = 0
    given_up: int = 0
    lost_lease: int = 0

    def merge(self, other: RelayStats) -> None:
        self.claimed += other.claimed
        self.delivered += other.delivered
        self.failed += other.failed
        self.given_up += other.given_up
        self.lost_lease += other.lost_lease


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class OutboxRelay:
    """Polls the Outbox Store and publishes due events.

    Args:
        store: Outbox Store (normally the same object as the Order Store).
        bus: Broker client; ``publish`` returning means acknowledged.
        clock: Time source for leases and retry schedules.
        policy: Backoff and give-up rules.
        worker_id: Lease owner id prefix; workers append ``-<n>``.
        batch_size: Max events claimed per pass.
        lease_seconds: How long a claim is exclusive.  The whole batch
            shares one lease, so it should exceed ``batch_size *
            delivery_timeout``; events whose lease has run out before
            their turn are skipped and left to the next claimer.
        delivery_timeout: Seconds to wait for a broker acknowledgment.
        poll_interval: Idle wait between passes.
        worker_count: Background workers started by :meth:`start`.
    """

    def __init__(
        self,
        store: IOutboxStore,
        bus: IEventBus,
        clock: IClock | None = None,
        policy: RetryPolicy | None = None,
        *,
        worker_id: str | None = None,
        batch_size: int = 20,
        lease_seconds: float = 120.0,
        delivery_timeout: float = 5.0,
        poll_interval: float = 0.5,
        worker_count: int = 1,
    ) -> None:
        self._store = store
        self._bus = bus
        self._clock = clock or WallClock()
        self._policy = policy or RetryPolicy()
        self._worker_id = worker_id or default_worker_id()
        self._batch_size = batch_size
        self._lease = timedelta(seconds=lease_seconds)
        self._delivery_timeout = delivery_timeout
        self._poll_interval = poll_interval
        self._worker_count = worker_count
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self.totals = RelayStats()

    @classmethod
    def from_config(
        cls,
        store: IOutboxStore,
        bus: IEventBus,
        config: RelayConfig,
        clock: IClock | None = None,
    ) -> OutboxRelay:
        return cls(
            store,
            bus,
            clock=clock,
            policy=RetryPolicy.from_config(config),
            batch_size=config.batch_size,
            lease_seconds=config.lease_seconds,
            delivery_timeout=config.delivery_timeout_seconds,
            poll_interval=config.poll_interval_seconds,
            worker_count=config.worker_count,
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # ------------------------------------------------------------------
    # One pass
    # ------------------------------------------------------------------

    async def run_once(self, worker_id: str | None = None) -> RelayStats:
        """Claim one batch and attempt delivery of every claimed event.

        Events whose lease ran out while earlier ones were being published
        are not attempted: another worker may already hold them.  Once the
        relay is stopping, claims not yet attempted are released so another
        worker can pick them up without waiting for the lease.
        """
        worker_id = worker_id or self._worker_id
        stats = RelayStats()
        batch = await self._store.claim_batch(
            worker_id, self._batch_size, self._clock.now(), self._lease,
        )
        stats.claimed = len(batch)

        for index, event in enumerate(batch):
            if self._stop_event.is_set():
                await self._release(batch[index:], worker_id)
                break
            if event.claimed_until is not None and event.claimed_until <= self._clock.now():
                stats.lost_lease += 1
                logger.warning(
                    "Relay %s lease on outbox event %s expired before delivery; skipping",
                    worker_id, event.id,
                )
                continue
            with trace(event.id):
                await self._deliver(event, worker_id, stats)

        if stats.claimed:
            OUTBOX_BACKLOG.set(await self._store.pending_count())
            logger.debug(
                "Relay %s pass: claimed=%d delivered=%d failed=%d given_up=%d lost_lease=%d",
                worker_id, stats.claimed, stats.delivered, stats.failed, stats.given_up,
                stats.lost_lease,
            )
        self.totals.merge(stats)
        return stats

    async def _release(self, events: list[OutboxEvent], worker_id: str) -> None:
        for event in events:
            await self._store.release(event.id, worker_id)
        logger.info(
            "Relay %s stopping; released %d unattempted event(s)", worker_id, len(events),
        )

    async def _deliver(self, event: OutboxEvent, worker_id: str, stats: RelayStats) -> None:
        topic, message_cls = route_for(event.event_type)
        attempts = event.attempts + 1

        try:
            message = message_cls.model_validate({**event.payload, "event_id": event.id})
        except PydanticValidationError as exc:
            # Retrying cannot repair a stored payload
            if await self._store.mark_failed(
                event.id, worker_id, attempts, None, f"invalid payload: {exc}",
            ):
                stats.given_up += 1
                RELAY_GIVEN_UP_TOTAL.labels(topic=topic).inc()
            logger.error(
                "Outbox event %s (%s) has an invalid payload; giving up",
                event.id, event.event_type.value,
            )
            return

        try:
            await asyncio.wait_for(
                self._bus.publish(topic, message), timeout=self._delivery_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._record_failure(event, worker_id, topic, attempts, exc, stats)
            return

        if await self._store.mark_delivered(event.id, worker_id, self._clock.now()):
            stats.delivered += 1
            RELAY_DELIVERED_TOTAL.labels(topic=topic).inc()
            logger.info(
                "Delivered outbox event %s for order %s to %s",
                event.id, event.order_id, topic,
            )
        else:
            # Lease expired mid-flight; another worker owns the event now
            stats.lost_lease += 1

    async def _record_failure(
        self,
        event: OutboxEvent,
        worker_id: str,
        topic: str,
        attempts: int,
        exc: BaseException,
        stats: RelayStats,
    ) -> None:
        error = (
            f"publish timed out after {self._delivery_timeout}s"
            if isinstance(exc, asyncio.TimeoutError)
            else f"{type(exc).__name__}: {exc}"
        )
        retry_at = self._policy.next_retry_at(attempts, self._clock.now())
        if not await self._store.mark_failed(event.id, worker_id, attempts, retry_at, error):
            stats.lost_lease += 1
            return

        RELAY_FAILURES_TOTAL.labels(topic=topic).inc()
        if retry_at is None:
            stats.given_up += 1
            RELAY_GIVEN_UP_TOTAL.labels(topic=topic).inc()
            logger.error(
                "Giving up on outbox event %s for order %s after %d attempts: %s",
                event.id, event.order_id, attempts, error,
            )
        else:
            stats.failed += 1
            logger.warning(
                "Delivery of outbox event %s failed (attempt %d), retry at %s: %s",
                event.id, attempts, retry_at.isoformat(), error,
            )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event, worker_id: str | None = None) -> None:
        """Pass repeatedly until ``stop_event`` is set.

        A full batch is followed immediately by another pass; otherwise the
        worker idles for ``poll_interval``.  Store outages are logged and
        retried on the next pass.
        """
        worker_id = worker_id or self._worker_id
        logger.info("Outbox relay worker %s started", worker_id)
        while not stop_event.is_set():
            try:
                stats = await self.run_once(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Outbox relay pass failed for worker %s", worker_id)
                stats = RelayStats()

            if stats.claimed >= self._batch_size:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox relay worker %s stopped", worker_id)

    async def start(self) -> None:
        """Launch ``worker_count`` background workers with distinct ids."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(
                self.run(self._stop_event, f"{self._worker_id}-{n}"),
                name=f"outbox-relay-{n}",
            )
            for n in range(self._worker_count)
        ]

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal workers and wait for their current pass to finish."""
        self._stop_event.set()
        if not self._tasks:
            return
        _done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def requeue(self, event_id: str) -> bool:
        """Return a Failed event to Pending with a fresh retry budget."""
        return await self._store.requeue(event_id)

    async def backlog(self) -> int:
        count = await self._store.pending_count()
        OUTBOX_BACKLOG.set(count)
        return count
