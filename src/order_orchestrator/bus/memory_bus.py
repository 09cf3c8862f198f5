"""In-process broker with consumer-group semantics.

Each consumer group sees every message on a topic once; when a group has
several consumers they take turns, as Redis Streams consumers of one
group do.  Each group is fed by its own background task in publish order,
so ``publish`` returns once the message is recorded and queued, never
after a handler has run: a slow consumer cannot stall the publisher.
``drain`` waits until every queued message has been handled.  A failing
handler becomes a dead letter and never fails the publisher: an
acknowledged publish means "accepted by the broker", not "processed by
every consumer".
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from order_orchestrator.core.events import BaseEvent
from order_orchestrator.core.ids import utc_now

logger = logging.getLogger(__name__)

Handler = Callable[[BaseEvent], Coroutine[Any, Any, None]]
ErrorCallback = Callable[[str, str, str, Exception], None]


@dataclass
class MemoryDeadLetter:
    """A message one group failed to process."""

    topic: str
    group: str
    event_id: str
    error: str
    failed_at: datetime = field(default_factory=utc_now)


class _Group:
    """Consumers of one group on one topic, served round-robin."""

    def __init__(self) -> None:
        self.consumers: list[Handler] = []
        self.queue: asyncio.Queue[BaseEvent] = asyncio.Queue()
        self.worker: asyncio.Task[None] | None = None
        self._turn: Iterator[int] = itertools.count()

    def next_consumer(self) -> Handler:
        return self.consumers[next(self._turn) % len(self.consumers)]


class MemoryEventBus:
    def __init__(self, on_handler_error: ErrorCallback | None = None) -> None:
        self._topics: dict[str, dict[str, _Group]] = defaultdict(dict)
        self._history: list[tuple[str, BaseEvent]] = []
        self._on_handler_error = on_handler_error
        self._failures: dict[str, int] = defaultdict(int)
        self._dead_letters: list[MemoryDeadLetter] = []
        self._processed = 0

    async def start(self) -> None:
        logger.debug("Memory bus ready (%d topic(s) subscribed)", len(self._topics))

    async def stop(self, timeout: float = 5.0) -> None:
        """Let queued messages finish for up to ``timeout`` seconds, then cancel."""
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Memory bus stopped with undelivered messages after %.1fs", timeout)
        workers = [g.worker for g in self._groups() if g.worker is not None]
        for group in self._groups():
            group.worker = None
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def publish(self, topic: str, event: BaseEvent) -> None:
        """Record ``event`` and queue it for every group; handlers run later."""
        self._history.append((topic, event))
        for name, group in list(self._topics.get(topic, {}).items()):
            group.queue.put_nowait(event)
            if group.worker is None or group.worker.done():
                group.worker = asyncio.create_task(
                    self._consume(topic, name, group), name=f"memory-bus:{topic}/{name}",
                )

    async def drain(self) -> None:
        """Wait until every message queued so far has been handled."""
        for group in self._groups():
            await group.queue.join()

    async def subscribe(self, topic: str, group: str, handler: Handler) -> None:
        """Add ``handler`` as a consumer of ``group`` on ``topic``."""
        self._topics[topic].setdefault(group, _Group()).consumers.append(handler)

    def _groups(self) -> list[_Group]:
        return [g for groups in self._topics.values() for g in groups.values()]

    async def _consume(self, topic: str, name: str, group: _Group) -> None:
        while True:
            event = await group.queue.get()
            try:
                await self._dispatch(topic, name, group.next_consumer(), event)
            finally:
                group.queue.task_done()

    async def _dispatch(
        self, topic: str, group: str, handler: Handler, event: BaseEvent,
    ) -> None:
        try:
            await handler(event)
        except Exception as exc:
            self._failures[f"{topic}/{group}"] += 1
            self._dead_letters.append(
                MemoryDeadLetter(
                    topic=topic, group=group, event_id=event.event_id, error=str(exc),
                )
            )
            logger.exception(
                "Group %s failed on %s message %s; dead-lettered",
                group, topic, event.event_id,
            )
            self._notify_error(topic, group, event.event_id, exc)
        else:
            self._processed += 1

    def _notify_error(self, topic: str, group: str, event_id: str, exc: Exception) -> None:
        if self._on_handler_error is None:
            return
        try:
            self._on_handler_error(topic, group, event_id, exc)
        except Exception:
            logger.warning("Handler error callback raised", exc_info=True)

    # -- Inspection ----------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        """Failures keyed by ``topic/group``."""
        return dict(self._failures)

    @property
    def dead_letters(self) -> list[MemoryDeadLetter]:
        return list(self._dead_letters)

    @property
    def messages_processed(self) -> int:
        return self._processed

    def get_history(self, topic: str | None = None) -> list[tuple[str, BaseEvent]]:
        """Published messages, optionally filtered by topic."""
        return [(t, e) for t, e in self._history if topic is None or t == topic]

    def clear_history(self) -> None:
        self._history.clear()
