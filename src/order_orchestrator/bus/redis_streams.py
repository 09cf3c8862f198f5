"""Redis Streams event bus.

One stream per topic.  ``publish`` is XADD: the returned entry id is the
broker acknowledgment the outbox relay waits for.  Each subscriber group
reads with XREADGROUP and gets at-least-once delivery:

- Messages are ack'd only *after* the handler succeeds.
- A failing message is retried up to ``max_handler_retries`` times, then
  recorded as a dead letter and ack'd so it does not block the stream.
- Malformed or unknown messages are dead-lettered immediately.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as aioredis

from order_orchestrator.core.errors import TransientError
from order_orchestrator.core.events import BaseEvent

from .schemas import get_event_class

logger = logging.getLogger(__name__)

Handler = Callable[[BaseEvent], Coroutine[Any, Any, None]]


@dataclass
class DeadLetter:
    """Record of a message that exhausted its retry budget."""

    topic: str
    group: str
    msg_id: str
    event_type: str
    error: str
    attempts: int
    timestamp: float = field(default_factory=time.monotonic)


class RedisStreamsBus:
    """Broker client backed by Redis Streams."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        max_stream_length: int = 10_000,
        block_ms: int = 1000,
        batch_size: int = 10,
        max_handler_retries: int = 3,
        on_handler_error: Callable[
            [str, str, str, Exception], None
        ] | None = None,
        redis: aioredis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = redis
        self._owns_redis = redis is None
        self._max_len = max_stream_length
        self._block_ms = block_ms
        self._batch_size = batch_size
        self._max_retries = max_handler_retries
        self._on_handler_error = on_handler_error
        self._consumer_suffix = f"{socket.gethostname()}-{id(self):x}"
        self._subscriptions: list[tuple[str, str, Handler]] = []
        self._tasks: list[asyncio.Task] = []
        self._running = False

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._handler_attempts: dict[str, int] = defaultdict(int)
        self._dead_letters: list[DeadLetter] = []
        self._messages_processed: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Redis and start consumer loops."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        self._running = True

        for topic, group, handler in self._subscriptions:
            await self._launch(topic, group, handler)

    async def stop(self) -> None:
        """Stop consumer loops and close the Redis connection."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Publish / Subscribe
    # ------------------------------------------------------------------

    async def publish(self, topic: str, event: BaseEvent) -> None:
        """Append the event to the topic stream.

        Raises TransientError when Redis is unreachable so the caller can
        back off and retry.
        """
        if self._redis is None:
            raise TransientError("RedisStreamsBus not started")

        payload = {
            "_type": type(event).__name__,
            "_id": event.event_id,
            "_data": event.model_dump_json(),
        }
        try:
            await self._redis.xadd(
                topic, payload, maxlen=self._max_len, approximate=True
            )
        except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
            raise TransientError(f"Redis unavailable: {exc}") from exc

    async def subscribe(self, topic: str, group: str, handler: Handler) -> None:
        """Register a handler.

        Can be called before or after start().  If the bus is already
        running the consumer loop is launched immediately.
        """
        self._subscriptions.append((topic, group, handler))
        if self._running and self._redis is not None:
            await self._launch(topic, group, handler)

    async def _launch(self, topic: str, group: str, handler: Handler) -> None:
        await self._ensure_group(topic, group)
        task = asyncio.create_task(
            self._consume_loop(topic, group, handler),
            name=f"consumer-{topic}-{group}",
        )
        self._tasks.append(task)

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def _consume_loop(self, topic: str, group: str, handler: Handler) -> None:
        """Read pending-for-me entries first, then new ones, until stopped.

        Entries whose handler failed stay in the group's pending list and
        are re-read from id ``0`` on the next pass.
        """
        consumer_name = f"{group}-{self._consumer_suffix}"
        assert self._redis is not None
        error_key = f"{topic}/{group}"
        cursor = "0"

        while self._running:
            try:
                entries = await self._redis.xreadgroup(
                    groupname=group,
                    consumername=consumer_name,
                    streams={topic: cursor},
                    count=self._batch_size,
                    block=None if cursor == "0" else self._block_ms,
                )

                messages = [m for _stream, batch in (entries or []) for m in batch]
                if cursor == "0" and not messages:
                    cursor = ">"
                    continue

                for msg_id, fields in messages:
                    if fields is None:
                        # Trimmed from the stream while pending
                        await self._redis.xack(topic, group, msg_id)
                        continue
                    await self._process_message(
                        topic, group, handler, msg_id, fields, error_key,
                    )

                if cursor == ">" and self._has_retries(topic, group):
                    cursor = "0"

            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Consumer loop error for %s/%s", topic, group)
                self._error_counts[error_key] += 1
                await asyncio.sleep(1)

    async def _process_message(
        self,
        topic: str,
        group: str,
        handler: Handler,
        msg_id: str,
        fields: dict[str, str],
        error_key: str,
    ) -> None:
        assert self._redis is not None
        event = self._deserialize(fields)
        if event is None:
            await self._dead_letter(topic, group, msg_id, fields, "deserialization_failed", 1)
            return

        attempt_key = f"{topic}/{group}/{msg_id}"
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_counts[error_key] += 1
            self._handler_attempts[attempt_key] += 1
            attempts = self._handler_attempts[attempt_key]
            logger.exception(
                "%s/%s failed on message %s (attempt %d of %d)",
                topic, group, msg_id, attempts, self._max_retries,
            )
            self._notify_error(topic, group, str(msg_id), exc)
            if attempts >= self._max_retries:
                self._handler_attempts.pop(attempt_key, None)
                await self._dead_letter(topic, group, msg_id, fields, str(exc), attempts)
            # Otherwise left pending; re-read from id 0 on the next pass
            return

        await self._redis.xack(topic, group, msg_id)
        self._messages_processed += 1
        self._handler_attempts.pop(attempt_key, None)

    async def _dead_letter(
        self,
        topic: str,
        group: str,
        msg_id: str,
        fields: dict[str, str],
        error: str,
        attempts: int,
    ) -> None:
        """Record the message as dead and ack it so the group moves on."""
        assert self._redis is not None
        logger.error(
            "Dead-lettering %s message %s for group %s: %s", topic, msg_id, group, error,
        )
        self._dead_letters.append(
            DeadLetter(
                topic=topic,
                group=group,
                msg_id=str(msg_id),
                event_type=fields.get("_type", "unknown"),
                error=error,
                attempts=attempts,
            )
        )
        await self._redis.xack(topic, group, msg_id)

    def _notify_error(self, topic: str, group: str, msg_id: str, exc: Exception) -> None:
        if self._on_handler_error is None:
            return
        try:
            self._on_handler_error(topic, group, msg_id, exc)
        except Exception:
            logger.warning("Handler error callback raised", exc_info=True)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_error_counts(self) -> dict[str, int]:
        return dict(self._error_counts)

    @property
    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    @property
    def messages_processed(self) -> int:
        return self._messages_processed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _has_retries(self, topic: str, group: str) -> bool:
        prefix = f"{topic}/{group}/"
        return any(key.startswith(prefix) for key in self._handler_attempts)

    async def _ensure_group(self, topic: str, group: str) -> None:
        """Create consumer group, ignoring BUSYGROUP if it already exists."""
        assert self._redis is not None
        try:
            await self._redis.xgroup_create(topic, group, id="0", mkstream=True)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    @staticmethod
    def _deserialize(fields: dict[str, str]) -> BaseEvent | None:
        """Deserialize a stream entry back to a message model."""
        event_type_name = fields.get("_type")
        event_data = fields.get("_data")

        if not event_type_name or not event_data:
            logger.warning("Malformed message: %s", fields)
            return None

        event_cls = get_event_class(event_type_name)
        if not event_cls:
            logger.warning("Unknown event type: %s", event_type_name)
            return None

        try:
            return event_cls.model_validate_json(event_data)
        except ValueError:
            logger.warning("Invalid %s payload: %s", event_type_name, event_data)
            return None
