"""Test MemoryEventBus publish/subscribe, dead letters and history."""

import asyncio
from decimal import Decimal

from order_orchestrator.bus.memory_bus import MemoryEventBus
from order_orchestrator.bus.schemas import ORDER_CREATED_TOPIC, STOCK_FAILED_TOPIC
from order_orchestrator.core.events import BaseEvent, OrderCreated, OrderLine, StockFailed


def _created(order_id: str = "o-1") -> OrderCreated:
    return OrderCreated(
        order_id=order_id,
        client_id="client-1",
        items=[OrderLine(product_id="p-widget", quantity=1)],
        total_amount=Decimal("10.00"),
    )


class TestMemoryEventBusPublishSubscribe:
    async def test_publish_invokes_handler(self, memory_bus):
        received = []

        async def handler(event: BaseEvent) -> None:
            received.append(event)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "group1", handler)
        event = _created()
        await memory_bus.publish(ORDER_CREATED_TOPIC, event)
        await memory_bus.drain()

        assert len(received) == 1
        assert received[0].event_id == event.event_id

    async def test_no_handler_for_topic(self, memory_bus):
        received = []

        async def handler(event: BaseEvent) -> None:
            received.append(event)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "group1", handler)
        await memory_bus.publish(STOCK_FAILED_TOPIC, StockFailed(order_id="o-1", reason="none"))
        await memory_bus.drain()

        assert len(received) == 0

    async def test_every_group_receives_each_message(self, memory_bus):
        received_a = []
        received_b = []

        async def handler_a(event: BaseEvent) -> None:
            received_a.append(event)

        async def handler_b(event: BaseEvent) -> None:
            received_b.append(event)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "notifications", handler_a)
        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "analytics", handler_b)
        await memory_bus.publish(ORDER_CREATED_TOPIC, _created())
        await memory_bus.drain()

        assert len(received_a) == 1
        assert len(received_b) == 1
        assert received_a[0].event_id == received_b[0].event_id
        assert memory_bus.messages_processed == 2

    async def test_consumers_of_one_group_take_turns(self, memory_bus):
        first = []
        second = []

        async def handler_a(event: BaseEvent) -> None:
            first.append(event.order_id)

        async def handler_b(event: BaseEvent) -> None:
            second.append(event.order_id)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "notifications", handler_a)
        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "notifications", handler_b)
        for order_id in ("a", "b", "c"):
            await memory_bus.publish(ORDER_CREATED_TOPIC, _created(order_id))
        await memory_bus.drain()

        assert first == ["a", "c"]
        assert second == ["b"]

    async def test_handler_error_is_dead_lettered_not_raised(self):
        received = []
        errors = []
        memory_bus = MemoryEventBus(on_handler_error=lambda *args: errors.append(args))

        async def bad_handler(event: BaseEvent) -> None:
            raise ValueError("boom")

        async def good_handler(event: BaseEvent) -> None:
            received.append(event)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "bad", bad_handler)
        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "good", good_handler)

        event = _created()
        await memory_bus.publish(ORDER_CREATED_TOPIC, event)
        await memory_bus.drain()

        assert len(received) == 1
        (dead,) = memory_bus.dead_letters
        assert (dead.group, dead.event_id, dead.error) == ("bad", event.event_id, "boom")
        assert memory_bus.get_error_counts() == {f"{ORDER_CREATED_TOPIC}/bad": 1}
        assert errors[0][:3] == (ORDER_CREATED_TOPIC, "bad", event.event_id)
        await memory_bus.stop()

    async def test_publish_returns_before_slow_handler_finishes(self, memory_bus):
        release = asyncio.Event()
        handled = []

        async def slow_handler(event: BaseEvent) -> None:
            await release.wait()
            handled.append(event.order_id)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "slow", slow_handler)
        await asyncio.wait_for(memory_bus.publish(ORDER_CREATED_TOPIC, _created("a")), timeout=1)
        await asyncio.wait_for(memory_bus.publish(ORDER_CREATED_TOPIC, _created("b")), timeout=1)
        assert handled == []

        release.set()
        await memory_bus.drain()
        assert handled == ["a", "b"]

    async def test_stop_cancels_stuck_handler(self):
        memory_bus = MemoryEventBus()

        async def stuck_handler(event: BaseEvent) -> None:
            await asyncio.sleep(60)

        await memory_bus.subscribe(ORDER_CREATED_TOPIC, "stuck", stuck_handler)
        await memory_bus.publish(ORDER_CREATED_TOPIC, _created())
        await asyncio.wait_for(memory_bus.stop(timeout=0.05), timeout=1)

        assert memory_bus.messages_processed == 0
        assert len(memory_bus.get_history()) == 1


class TestMemoryEventBusHistory:
    async def test_history_filter_by_topic(self, memory_bus):
        await memory_bus.publish(ORDER_CREATED_TOPIC, _created("a"))
        await memory_bus.publish(STOCK_FAILED_TOPIC, StockFailed(order_id="b", reason="x"))

        created = memory_bus.get_history(topic=ORDER_CREATED_TOPIC)
        assert len(created) == 1
        assert created[0][1].order_id == "a"
        assert len(memory_bus.get_history()) == 2

    async def test_clear_history(self, memory_bus):
        await memory_bus.publish(ORDER_CREATED_TOPIC, _created())
        memory_bus.clear_history()
        assert memory_bus.get_history() == []
