"""Application bootstrap.

Wires store, bus, catalog, engine, relay and consumers from Settings and
runs them until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field
from typing import Any

from .bus.bus import create_event_bus
from .core.clock import IClock, WallClock
from .core.config import Settings, load_settings
from .core.enums import StoreBackend
from .core.interfaces import IEventBus
from .core.models import ClientContact, ProductQuote, money
from .lifecycle.engine import LifecycleEngine
from .lifecycle.pricing import HttpCatalogClient, StaticCatalog
from .lifecycle.stock import StockFailureListener
from .notifications.coordinator import NotificationCoordinator
from .notifications.directory import StaticClientDirectory
from .notifications.senders import LoggingSender
from .observability.logger import setup_logging
from .outbox.relay import OutboxRelay
from .storage.memory import InMemoryOrderStore

logger = logging.getLogger(__name__)


@dataclass
class Service:
    """Every long-lived component of one service process."""

    settings: Settings
    store: Any
    bus: IEventBus
    catalog: StaticCatalog | HttpCatalogClient
    engine: LifecycleEngine
    relay: OutboxRelay
    coordinator: NotificationCoordinator | None
    stock_listener: StockFailureListener
    _started: list[str] = field(default_factory=list)

    async def start(self, relay: bool = True, consumers: bool = True) -> None:
        await self.bus.start()
        self._started.append("bus")
        if consumers:
            await self.stock_listener.start()
            if self.coordinator is not None:
                await self.coordinator.start()
        if relay and self.settings.relay.enabled:
            await self.relay.start()
            self._started.append("relay")
        logger.info("Service components started: %s", ", ".join(self._started))

    async def stop(self) -> None:
        if "relay" in self._started:
            await self.relay.stop()
        if "bus" in self._started:
            await self.bus.stop()
        self._started.clear()
        if isinstance(self.catalog, HttpCatalogClient):
            await self.catalog.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
        logger.info("Service stopped")


async def create_store(settings: Settings) -> Any:
    if settings.store.backend == StoreBackend.POSTGRES:
        from .storage.postgres.repos import SqlOrderStore

        return await SqlOrderStore.from_url(
            settings.store.postgres_url,
            pool_size=settings.store.pool_size,
            create_tables=settings.store.create_tables,
        )
    return InMemoryOrderStore()


def create_catalog(settings: Settings) -> StaticCatalog | HttpCatalogClient:
    config = settings.catalog
    if config.base_url:
        return HttpCatalogClient(config.base_url, timeout=config.timeout_seconds)
    return StaticCatalog(
        [
            ProductQuote(product_id=pid, name=p.name, unit_price=money(p.price))
            for pid, p in config.products.items()
        ],
        default_unit_price=config.default_unit_price,
    )


async def build_service(settings: Settings, clock: IClock | None = None) -> Service:
    """Construct all components.  Nothing is started."""
    clock = clock or WallClock()
    store = await create_store(settings)
    bus = create_event_bus(settings.bus)
    catalog = create_catalog(settings)

    engine = LifecycleEngine(
        store,
        catalog,
        clock=clock,
        commit_timeout=settings.store.commit_timeout_seconds,
        lookup_timeout=settings.catalog.timeout_seconds,
    )
    relay = OutboxRelay.from_config(store, bus, settings.relay, clock=clock)

    coordinator = None
    notifications = settings.notifications
    if notifications.enabled:
        fallback = None
        if notifications.fallback_recipient:
            fallback = ClientContact(
                client_id="",
                name=notifications.fallback_name,
                email=notifications.fallback_recipient,
            )
        coordinator = NotificationCoordinator(
            bus,
            StaticClientDirectory(fallback=fallback),
            LoggingSender(notifications.sender_address),
            dedupe_window=notifications.dedupe_window,
        )

    return Service(
        settings=settings,
        store=store,
        bus=bus,
        catalog=catalog,
        engine=engine,
        relay=relay,
        coordinator=coordinator,
        stock_listener=StockFailureListener(bus),
    )


class _EmbeddedServer:
    """uvicorn server whose signals are handled by the service."""

    def __init__(self, app: Any, host: str, port: int) -> None:
        import uvicorn

        class _Server(uvicorn.Server):
            @contextlib.contextmanager
            def capture_signals(self):  # type: ignore[override]
                yield

            def install_signal_handlers(self) -> None:
                pass

        self._server = _Server(
            uvicorn.Config(app, host=host, port=port, log_config=None)
        )

    async def serve(self) -> None:
        await self._server.serve()

    def stop(self) -> None:
        self._server.should_exit = True


async def run(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
    api: bool = True,
) -> None:
    """Main entry point.  Load config, wire components, run until signalled.

    With ``api=False`` only the relay runs (no HTTP server, no consumers).
    """
    settings = load_settings(config_path=config_path, overrides=overrides)

    obs = settings.observability
    setup_logging(level=obs.log_level, format=obs.log_format, service=settings.service_name)

    if obs.metrics_enabled:
        from .observability.metrics import start_metrics_server

        try:
            start_metrics_server(port=obs.metrics_port, service=settings.service_name)
        except OSError:
            logger.warning("Failed to start metrics server", exc_info=True)

    service = await build_service(settings)

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    server: _EmbeddedServer | None = None
    server_task: asyncio.Task | None = None
    try:
        await service.start(relay=True, consumers=api)

        if api:
            from .api.app import create_app

            app = create_app(service.engine, outbox=service.store)
            server = _EmbeddedServer(app, settings.api.host, settings.api.port)
            server_task = asyncio.create_task(server.serve(), name="http-server")
            server_task.add_done_callback(lambda _t: stop_event.set())

        logger.info(
            "Order service running (api=%s, store=%s, bus=%s). Press Ctrl+C to stop.",
            api, settings.store.backend.value, settings.bus.backend.value,
        )
        await stop_event.wait()
    finally:
        if server is not None and server_task is not None:
            server.stop()
            await asyncio.gather(server_task, return_exceptions=True)
        await service.stop()
        logger.info("Shutdown complete")
