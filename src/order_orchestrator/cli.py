"""CLI entry point for the order service."""

from __future__ import annotations

import asyncio

import click

from .core.config import Settings, load_settings
from .core.enums import StoreBackend


@click.group()
def main() -> None:
    """Order Orchestrator."""


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--port", default=None, type=int, help="HTTP port override")
def serve(config: str | None, port: int | None) -> None:
    """Run the HTTP API, outbox relay and consumers."""
    from .main import run

    overrides: dict = {}
    if port is not None:
        overrides["api"] = {"port": port}
    asyncio.run(run(config_path=config, overrides=overrides, api=True))


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--workers", default=None, type=int, help="Relay worker count override")
def relay(config: str | None, workers: int | None) -> None:
    """Run only the outbox relay."""
    from .main import run

    overrides: dict = {"relay": {"enabled": True}}
    if workers is not None:
        overrides["relay"]["worker_count"] = workers
    asyncio.run(run(config_path=config, overrides=overrides, api=False))


@main.command("init-db")
@click.option("--config", default=None, help="Config file path")
def init_db(config: str | None) -> None:
    """Create the database tables (development; production uses alembic)."""
    settings = load_settings(config_path=config)
    if settings.store.backend != StoreBackend.POSTGRES:
        raise click.ClickException("init-db requires store.backend = postgres")

    async def _init() -> None:
        from .storage.postgres.repos import SqlOrderStore

        store = await SqlOrderStore.from_url(settings.store.postgres_url, create_tables=True)
        await store.close()

    asyncio.run(_init())
    click.echo("Tables created.")


@main.command("outbox-status")
@click.option("--config", default=None, help="Config file path")
def outbox_status(config: str | None) -> None:
    """Show the undelivered backlog and events that need an operator."""
    settings = load_settings(config_path=config)

    async def _status() -> None:
        store = await _open_store(settings)
        try:
            pending = await store.pending_count()
            failed = await store.list_failed()
        finally:
            await _close(store)

        click.echo(f"Undelivered events: {pending}")
        if not failed:
            click.echo("No failed events.")
            return
        click.echo(f"\n{'=' * 70}")
        click.echo(f"{'EVENT ID':36s}  {'TYPE':15s}  {'ATTEMPTS':>8s}  NEXT RETRY")
        click.echo(f"{'=' * 70}")
        for event in failed:
            retry = event.next_retry_at.isoformat() if event.next_retry_at else "given up"
            click.echo(
                f"{event.id:36s}  {event.event_type.value:15s}  {event.attempts:>8d}  {retry}"
            )
            if event.last_error:
                click.echo(f"  last error: {event.last_error}")

    asyncio.run(_status())


@main.command()
@click.argument("event_id")
@click.option("--config", default=None, help="Config file path")
def requeue(event_id: str, config: str | None) -> None:
    """Return a Failed outbox event to Pending with a fresh retry budget."""
    settings = load_settings(config_path=config)

    async def _requeue() -> bool:
        store = await _open_store(settings)
        try:
            return await store.requeue(event_id)
        finally:
            await _close(store)

    if not asyncio.run(_requeue()):
        raise click.ClickException(f"No failed outbox event {event_id}")
    click.echo(f"Requeued {event_id}.")


@main.command()
@click.option("--config", default=None, help="Config file path")
@click.option("--count", default=10, show_default=True, type=int, help="Sample orders to create")
@click.option("--product", "products", multiple=True, help="Product id to order (repeatable)")
def seed(config: str | None, count: int, products: tuple[str, ...]) -> None:
    """Create sample orders for development (skipped if orders exist)."""
    settings = load_settings(config_path=config)
    product_ids = list(products) or list(settings.catalog.products)
    if not product_ids:
        raise click.ClickException(
            "No products to order; pass --product or configure catalog.products"
        )

    async def _seed() -> int:
        from .lifecycle.engine import LifecycleEngine
        from .lifecycle.seed import seed_orders
        from .main import create_catalog

        store = await _open_store(settings)
        catalog = create_catalog(settings)
        try:
            engine = LifecycleEngine(store, catalog)
            return len(await seed_orders(engine, product_ids, count=count))
        finally:
            await _close(catalog)
            await _close(store)

    created = asyncio.run(_seed())
    if not created:
        click.echo("Orders already present; nothing seeded.")
        return
    click.echo(f"Seeded {created} orders.")


async def _open_store(settings: Settings):
    if settings.store.backend != StoreBackend.POSTGRES:
        raise click.ClickException(
            "The in-memory store is per-process; set store.backend = postgres"
        )
    from .main import create_store

    return await create_store(settings)


async def _close(resource) -> None:
    close = getattr(resource, "close", None)
    if close is not None:
        await close()


if __name__ == "__main__":
    main()
