"""SQLAlchemy ORM models for the orders database.

Orders, their line items and the outbox live in one database so that an
order mutation and its outbox row commit in the same transaction.

Relationships:
    OrderRecord 1--* OrderItemRecord  (order_id foreign key)
    OrderRecord 1--* OutboxRecord     (order_id, no FK: rows outlive pruning)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# OrderRecord
# ---------------------------------------------------------------------------

class OrderRecord(Base):
    """Persisted order aggregate root.

    Maps from :class:`order_orchestrator.core.models.Order`.  Transitions
    UPDATE this row guarded by ``version``; the row always reflects the
    latest committed state.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    shipping_address: Mapped[str] = mapped_column(String(500), nullable=False)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list[OrderItemRecord]] = relationship(
        "OrderItemRecord",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemRecord.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_orders_client_id", "client_id"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderRecord(id={self.id!r}, client_id={self.client_id!r}, "
            f"status={self.status!r}, version={self.version})>"
        )


# ---------------------------------------------------------------------------
# OrderItemRecord
# ---------------------------------------------------------------------------

class OrderItemRecord(Base):
    """Line item with the product name and price snapshotted at creation."""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    order: Mapped[OrderRecord] = relationship("OrderRecord", back_populates="items")

    __table_args__ = (Index("ix_order_items_order_id", "order_id"),)


# ---------------------------------------------------------------------------
# OutboxRecord
# ---------------------------------------------------------------------------

class OutboxRecord(Base):
    """Pending side effect of a committed transition.

    ``sequence`` is the autoincrement primary key and orders events within
    an order.  ``event_id`` is the id published to the broker.
    """

    __tablename__ = "outbox_events"

    sequence: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict] = mapped_column(JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivery_state: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_outbox_events_order_id_sequence", "order_id", "sequence"),
        Index("ix_outbox_events_delivery_state", "delivery_state"),
    )

    def __repr__(self) -> str:
        return (
            f"<OutboxRecord(event_id={self.event_id!r}, order_id={self.order_id!r}, "
            f"event_type={self.event_type!r}, state={self.delivery_state!r})>"
        )
