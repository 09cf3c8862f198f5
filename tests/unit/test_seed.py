"""Test seed_orders creates sample orders through the engine."""

import random

import pytest

from order_orchestrator.core.enums import OrderStatus, OutboxEventType
from order_orchestrator.lifecycle.seed import seed_orders

PRODUCTS = ["p-widget", "p-gadget", "p-cable"]


class TestSeedOrders:
    async def test_creates_orders_with_outbox_history(self, engine, store):
        orders = await seed_orders(engine, PRODUCTS, count=6, rng=random.Random(7))

        assert len(orders) == 7
        assert orders[-1].status == OrderStatus.CANCELLED
        assert orders[-1].cancellation_reason
        for order in orders:
            events = await store.events_for_order(order.id)
            # One event per committed change
            assert len(events) == order.version + 1
            assert events[0].event_type == OutboxEventType.CREATED
            if order.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
                assert order.tracking_number.startswith("TRACK-")

    async def test_skips_when_orders_exist(self, engine, pending_order):
        assert await seed_orders(engine, PRODUCTS) == []
        assert len(await engine.list_orders()) == 1

    async def test_needs_products(self, engine):
        with pytest.raises(ValueError):
            await seed_orders(engine, [])
