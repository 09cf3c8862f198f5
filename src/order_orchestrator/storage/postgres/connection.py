"""Async engine and transaction scope for the SQL order store.

There is no module-level engine: ``SqlOrderStore`` owns the engine it is
given and disposes of it on ``close``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .models import Base

logger = logging.getLogger(__name__)


def create_engine(
    url: str,
    *,
    pool_size: int = 5,
    pool_recycle: int = 1800,
    echo: bool = False,
    use_null_pool: bool = False,
) -> AsyncEngine:
    """Build an :class:`AsyncEngine` for ``url``.

    Postgres (``postgresql+asyncpg://``) gets a bounded pool with
    pre-ping, so a connection dropped by the server is replaced instead of
    failing the next commit.  SQLite URLs (tests) keep SQLAlchemy's default
    pool.  ``use_null_pool`` opens one connection per checkout, for
    one-shot processes such as migrations.
    """
    options: dict = {"echo": echo}
    if use_null_pool:
        options["poolclass"] = NullPool
    elif not url.startswith("sqlite"):
        options.update(
            pool_size=pool_size,
            max_overflow=pool_size,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
        )

    engine = create_async_engine(url, **options)
    logger.info("Order store engine for %s (pool_size=%d)", url.rsplit("@", 1)[-1], pool_size)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create missing tables from the ORM metadata (dev/test; prod runs alembic)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Order store tables created / verified.")


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """One session, one transaction: commit on success, rollback on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
