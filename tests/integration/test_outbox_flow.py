"""End-to-end: engine -> outbox -> relay -> bus -> notification coordinator."""

import asyncio

from order_orchestrator.bus.memory_bus import MemoryEventBus
from order_orchestrator.bus.schemas import STOCK_FAILED_TOPIC
from order_orchestrator.core.config import Settings
from order_orchestrator.core.enums import DeliveryState, OrderStatus
from order_orchestrator.core.events import StockFailed
from order_orchestrator.main import build_service
from order_orchestrator.notifications.coordinator import NotificationCoordinator
from order_orchestrator.outbox.backoff import RetryPolicy
from order_orchestrator.outbox.relay import OutboxRelay


class AckLossBus(MemoryEventBus):
    """Delivers every message but reports the first publish as failed."""

    def __init__(self) -> None:
        super().__init__()
        self.failed_once = False

    async def publish(self, topic, event):
        await super().publish(topic, event)
        if not self.failed_once:
            self.failed_once = True
            raise ConnectionError("broker ack lost")


async def _drain(relay, store, bus, clock, rounds: int = 20) -> None:
    for _ in range(rounds):
        if not await store.pending_count():
            await bus.drain()
            return
        await relay.run_once()
        clock.advance(120)
    raise AssertionError("outbox did not drain")


async def _walk_to_delivered(engine, order_id: str) -> None:
    await engine.update_status(order_id, OrderStatus.PROCESSING)
    await engine.update_status(order_id, OrderStatus.SHIPPED, tracking_number="TRK-42")
    await engine.update_status(order_id, OrderStatus.DELIVERED)


class TestLifecycleNotifications:
    async def test_full_lifecycle_sends_one_mail_per_step(
        self, engine, store, relay, memory_bus, directory, sender, sim_clock, pending_order,
    ):
        coordinator = NotificationCoordinator(memory_bus, directory, sender)
        await coordinator.start()

        await _walk_to_delivered(engine, pending_order.id)
        await _drain(relay, store, memory_bus, sim_clock)

        assert [n.kind for n in sender.sent] == [
            "created", "processing", "shipped", "delivered",
        ]
        assert all(n.recipient == "ana@example.com" for n in sender.sent)
        assert "Total: $27.50" in sender.sent[0].body
        assert "Tracking number: TRK-42" in sender.sent[2].body
        assert {n.event_id for n in sender.sent} == {
            e.id for e in await store.events_for_order(pending_order.id)
        }

    async def test_cancellation_mail_carries_reason(
        self, engine, store, relay, memory_bus, directory, sender, sim_clock, pending_order,
    ):
        coordinator = NotificationCoordinator(memory_bus, directory, sender)
        await coordinator.start()

        await engine.cancel_order(pending_order.id, "Found a better price")
        await _drain(relay, store, memory_bus, sim_clock)

        assert [n.kind for n in sender.sent] == ["created", "cancelled"]
        assert "Reason: Found a better price" in sender.sent[1].body

    async def test_redelivery_after_lost_ack_notifies_once(
        self, engine, store, directory, sender, sim_clock, pending_order,
    ):
        bus = AckLossBus()
        coordinator = NotificationCoordinator(bus, directory, sender)
        await coordinator.start()
        relay = OutboxRelay(
            store, bus, clock=sim_clock,
            policy=RetryPolicy(base_seconds=1.0, max_seconds=60.0, max_attempts=3),
            worker_id="relay-test",
        )

        await _drain(relay, store, bus, sim_clock)

        assert len(bus.get_history()) == 2
        assert [n.kind for n in sender.sent] == ["created"]
        assert coordinator.duplicate_count == 1
        await bus.stop()

    async def test_orders_are_independent(
        self, engine, store, relay, memory_bus, directory, sender, sim_clock, pending_order,
    ):
        coordinator = NotificationCoordinator(memory_bus, directory, sender)
        await coordinator.start()
        other = await engine.create_order(
            "client-2", "221B Baker Street", [{"product_id": "p-cable", "quantity": 1}],
        )

        await engine.update_status(other.id, OrderStatus.PROCESSING)
        await _drain(relay, store, memory_bus, sim_clock)

        by_order = {}
        for notification in sender.sent:
            by_order.setdefault(notification.order_id, []).append(notification.kind)
        assert by_order == {
            pending_order.id: ["created"],
            other.id: ["created", "processing"],
        }
        assert [n.recipient_name for n in sender.sent if n.order_id == other.id] == [
            "Ben", "Ben",
        ]

    async def test_slow_mail_does_not_fail_delivery(
        self, store, memory_bus, directory, sender, sim_clock, pending_order,
    ):
        class SlowSender:
            async def send(self, notification):
                await asyncio.sleep(0.3)
                await sender.send(notification)

        coordinator = NotificationCoordinator(memory_bus, directory, SlowSender())
        await coordinator.start()
        relay = OutboxRelay(
            store, memory_bus, clock=sim_clock, worker_id="relay-test", delivery_timeout=0.05,
        )

        stats = await relay.run_once()

        assert (stats.delivered, stats.failed) == (1, 0)
        (event,) = await store.events_for_order(pending_order.id)
        assert event.delivery_state == DeliveryState.DELIVERED
        assert await store.pending_count() == 0
        assert sender.sent == []

        await memory_bus.drain()
        assert [n.kind for n in sender.sent] == ["created"]


class TestServiceWiring:
    async def test_build_and_run_memory_service(self):
        settings = Settings(
            catalog={"products": {"p-widget": {"name": "Widget", "price": "10.00"}}},
            relay={"poll_interval_seconds": 0.01},
            notifications={"fallback_recipient": "orders@example.com"},
        )
        service = await build_service(settings)
        await service.start()
        try:
            order = await service.engine.create_order(
                "walk-in", "Av. Siempre Viva 742", [{"product_id": "p-widget", "quantity": 3}],
            )
            assert str(order.total_amount) == "30.00"

            for _ in range(200):
                if service.coordinator.sent_count and not await service.store.pending_count():
                    break
                await asyncio.sleep(0.01)
            assert service.coordinator.sent_count == 1
            assert await service.store.pending_count() == 0

            await service.bus.publish(
                STOCK_FAILED_TOPIC,
                StockFailed(order_id=order.id, reason="out of stock"),
            )
            await service.bus.drain()
            assert service.stock_listener.received[0].order_id == order.id
        finally:
            await service.stop()
        assert not service.relay.is_running
