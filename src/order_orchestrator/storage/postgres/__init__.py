"""SQL-backed Order Store and Outbox Store (PostgreSQL via asyncpg)."""

from .repos import SqlOrderStore

__all__ = ["SqlOrderStore"]
