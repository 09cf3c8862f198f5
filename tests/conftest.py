"""Shared fixtures for the order-orchestrator test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from order_orchestrator.bus.memory_bus import MemoryEventBus
from order_orchestrator.core.clock import SimClock
from order_orchestrator.core.models import ClientContact
from order_orchestrator.lifecycle.engine import LifecycleEngine
from order_orchestrator.lifecycle.pricing import StaticCatalog
from order_orchestrator.notifications.directory import StaticClientDirectory
from order_orchestrator.notifications.senders import RecordingSender
from order_orchestrator.outbox.backoff import RetryPolicy
from order_orchestrator.outbox.relay import OutboxRelay
from order_orchestrator.storage.memory import InMemoryOrderStore

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

@pytest.fixture
def sim_clock() -> SimClock:
    """Deterministic clock starting at 2024-03-01 12:00 UTC."""
    return SimClock(START)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def catalog() -> StaticCatalog:
    """Three products: Widget 10.00, Gadget 2.50, Cable 0.99."""
    return StaticCatalog({
        "p-widget": ("Widget", Decimal("10.00")),
        "p-gadget": ("Gadget", Decimal("2.50")),
        "p-cable": ("Cable", Decimal("0.99")),
    })


@pytest.fixture
async def memory_bus():
    bus = MemoryEventBus()
    yield bus
    await bus.stop()


@pytest.fixture
def directory() -> StaticClientDirectory:
    return StaticClientDirectory([
        ClientContact(client_id="client-1", name="Ana", email="ana@example.com"),
        ClientContact(client_id="client-2", name="Ben", email="ben@example.com"),
    ])


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


# ---------------------------------------------------------------------------
# Components under test
# ---------------------------------------------------------------------------

@pytest.fixture
def engine(store, catalog, sim_clock) -> LifecycleEngine:
    return LifecycleEngine(store, catalog, clock=sim_clock)


@pytest.fixture
def relay(store, memory_bus, sim_clock) -> OutboxRelay:
    """Relay with a 3-attempt budget and 1s base backoff."""
    return OutboxRelay(
        store,
        memory_bus,
        clock=sim_clock,
        policy=RetryPolicy(base_seconds=1.0, max_seconds=60.0, max_attempts=3),
        worker_id="relay-test",
        batch_size=10,
        lease_seconds=30.0,
        delivery_timeout=1.0,
        poll_interval=0.01,
    )


@pytest.fixture
async def pending_order(engine):
    """A Pending order for client-1: 2 Widgets + 3 Gadgets (27.50)."""
    return await engine.create_order(
        client_id="client-1",
        shipping_address="Av. Siempre Viva 742, Springfield",
        items=[
            {"product_id": "p-widget", "quantity": 2},
            {"product_id": "p-gadget", "quantity": 3},
        ],
    )
