"""Test notification templates, directory fallback and the coordinator."""

from __future__ import annotations

from decimal import Decimal

from order_orchestrator.bus.schemas import ORDER_CREATED_TOPIC, ORDER_STATUS_UPDATED_TOPIC
from order_orchestrator.core.enums import OrderStatus
from order_orchestrator.core.events import (
    OrderCancelled,
    OrderCreated,
    OrderLine,
    OrderStatusUpdated,
)
from order_orchestrator.core.models import ClientContact
from order_orchestrator.notifications.coordinator import NotificationCoordinator
from order_orchestrator.notifications.directory import StaticClientDirectory
from order_orchestrator.notifications.templates import render

ORDER_ID = "3f2b9c1e-0000-4000-8000-000000000001"
ANA = ClientContact(client_id="client-1", name="Ana", email="ana@example.com")


def _created(**overrides) -> OrderCreated:
    fields = dict(
        order_id=ORDER_ID,
        client_id="client-1",
        items=[OrderLine(product_id="p-widget", quantity=2)],
        total_amount=Decimal("1234.50"),
    )
    fields.update(overrides)
    return OrderCreated(**fields)


def _status(new_status: OrderStatus, old_status=OrderStatus.PENDING, **kw) -> OrderStatusUpdated:
    return OrderStatusUpdated(
        order_id=ORDER_ID,
        client_id="client-1",
        old_status=old_status,
        new_status=new_status,
        **kw,
    )


class TestTemplates:
    def test_created_confirmation(self):
        note = render(_created(), ANA)
        assert note.kind == "created"
        assert note.subject == "Order confirmation #3f2b9c1e"
        assert note.recipient == "ana@example.com"
        assert "Ana" in note.body
        assert "$1,234.50" in note.body
        assert ORDER_ID in note.body

    def test_shipped_includes_tracking(self):
        note = render(
            _status(OrderStatus.SHIPPED, OrderStatus.PROCESSING, tracking_number="TRK-9"),
            ANA,
        )
        assert note.kind == "shipped"
        assert "TRK-9" in note.body
        assert note.subject.endswith("#3f2b9c1e")

    def test_processing_and_delivered(self):
        assert render(_status(OrderStatus.PROCESSING), ANA).kind == "processing"
        delivered = render(_status(OrderStatus.DELIVERED, OrderStatus.SHIPPED), ANA)
        assert delivered.kind == "delivered"

    def test_cancelled_includes_reason(self):
        event = OrderCancelled(
            order_id=ORDER_ID,
            client_id="client-1",
            previous_status=OrderStatus.PENDING,
            cancellation_reason="Payment declined",
        )
        note = render(event, ANA)
        assert note.kind == "cancelled"
        assert "Payment declined" in note.body

    def test_no_template_for_pending(self):
        assert render(_status(OrderStatus.PENDING), ANA) is None


class TestDirectory:
    async def test_known_and_unknown_clients(self, directory):
        assert (await directory.get_contact("client-1")).name == "Ana"
        assert await directory.get_contact("stranger") is None

    async def test_fallback_contact(self):
        fallback = ClientContact(client_id="", name="Customer", email="orders@example.com")
        directory = StaticClientDirectory(fallback=fallback)
        contact = await directory.get_contact("client-9")
        assert contact.client_id == "client-9"
        assert contact.email == "orders@example.com"


class TestCoordinator:
    async def test_sends_once_per_event_id(self, memory_bus, directory, sender):
        coordinator = NotificationCoordinator(memory_bus, directory, sender)
        await coordinator.start()

        event = _created()
        await memory_bus.publish(ORDER_CREATED_TOPIC, event)
        await memory_bus.publish(ORDER_CREATED_TOPIC, event)
        await memory_bus.drain()

        assert len(sender.sent) == 1
        assert sender.sent[0].event_id == event.event_id
        assert coordinator.duplicate_count == 1

    async def test_status_without_template_sends_nothing(self, memory_bus, directory, sender):
        coordinator = NotificationCoordinator(memory_bus, directory, sender)
        await coordinator.start()
        await memory_bus.publish(ORDER_STATUS_UPDATED_TOPIC, _status(OrderStatus.PENDING))
        await memory_bus.drain()
        assert sender.sent == []
        assert coordinator.failure_count == 0

    async def test_unknown_client_is_dropped(self, memory_bus, directory, sender):
        coordinator = NotificationCoordinator(memory_bus, directory, sender)
        await coordinator.handle(_created(client_id="stranger"))
        assert sender.sent == []
        assert coordinator.failure_count == 0

    async def test_sender_failure_is_contained(self, memory_bus, directory):
        class _BrokenSender:
            async def send(self, notification):
                raise ConnectionError("smtp down")

        coordinator = NotificationCoordinator(memory_bus, directory, _BrokenSender())
        await coordinator.start()
        await memory_bus.publish(ORDER_CREATED_TOPIC, _created())
        await memory_bus.drain()

        assert coordinator.failure_count == 1
        assert memory_bus.dead_letters == []

    async def test_failed_event_can_be_retried(self, memory_bus, directory, sender):
        calls = {"n": 0}

        class _OnceBroken:
            async def send(self, notification):
                calls["n"] += 1
                if calls["n"] == 1:
                    raise ConnectionError("smtp down")
                await sender.send(notification)

        coordinator = NotificationCoordinator(memory_bus, directory, _OnceBroken())
        event = _created()
        await coordinator.handle(event)
        await coordinator.handle(event)
        assert len(sender.sent) == 1

    async def test_dedupe_window_is_bounded(self, memory_bus, directory, sender):
        coordinator = NotificationCoordinator(memory_bus, directory, sender, dedupe_window=2)
        first = _created()
        await coordinator.handle(first)
        await coordinator.handle(_created())
        await coordinator.handle(_created())
        # ``first`` fell out of the window
        await coordinator.handle(first)
        assert len(sender.sent) == 4
