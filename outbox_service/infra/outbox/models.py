"""SQLAlchemy tables backing the outbox.

``outbox`` holds one row per outbound message. Rows are written in the same
transaction as the business change that produced them and drained in
``sequence_number`` order by the poller.

``outbox_sequence`` is a single-row counter used to allocate sequence numbers
on databases without native sequences (SQLite). PostgreSQL uses the
``outbox_sequence_seq`` sequence instead.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Sequence,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from outbox_service.core.database.base import Base

SEQUENCE_NAME = "outbox_sequence_seq"

# Native sequence, used where the dialect supports sequences
outbox_sequence_seq = Sequence(SEQUENCE_NAME, start=1, increment=1, metadata=Base.metadata)

# Fallback counter for dialects without sequences
outbox_sequence_counter = Table(
    "outbox_sequence",
    Base.metadata,
    Column("name", String(64), primary_key=True, comment="Sequence name"),
    Column("value", BigInteger, nullable=False, comment="Last allocated value"),
)


class OutboxMessage(Base):
    """Outbox row.

    Attributes:
        id: UUID string generated by the writer
        message_type: EVENT or TASK
        aggregate_type: Owning aggregate type (e.g. "Article")
        aggregate_id: Owning aggregate id
        event_type: Event type or command type
        event_payload: Serialized envelope (JSON)
        topic: Transport topic / command route
        routing_key: Transport routing key
        created_at: Creation time
        published_at: Delivery time, NULL while pending
        retry_count: Failed delivery attempts
        last_error: Last failure message
        next_retry_at: Earliest next delivery attempt
        sequence_number: Global delivery order
    """

    __tablename__ = "outbox"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment="Client-generated UUID",
    )
    message_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="EVENT or TASK",
    )

    # Ownership
    aggregate_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Aggregate type (e.g., Article)",
    )
    aggregate_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Aggregate ID",
    )

    # Message
    event_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Event type or command type",
    )
    event_payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="JSON-serialized envelope",
    )
    topic: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Transport topic or command route",
    )
    routing_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Transport routing key",
    )

    # Delivery state
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the entry was staged",
    )
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the entry was delivered",
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of failed publish attempts",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last publish error (max 4000 chars)",
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Earliest next publish attempt",
    )
    sequence_number: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
        comment="Global delivery order",
    )

    __table_args__ = (
        CheckConstraint("message_type IN ('EVENT', 'TASK')", name="message_type"),
        # Poller fetch: unpublished rows in sequence order
        Index(
            "idx_outbox_unpublished",
            "sequence_number",
            "next_retry_at",
            postgresql_where=published_at.is_(None),
        ),
        # Retention cleanup
        Index("idx_outbox_cleanup", "published_at"),
        Index("idx_outbox_aggregate", "aggregate_type", "aggregate_id"),
        Index("idx_outbox_message_type", "message_type"),
        Index("idx_outbox_event_type", "event_type"),
        # Dead-letter accounting
        Index(
            "idx_outbox_failed",
            "retry_count",
            "created_at",
            postgresql_where=published_at.is_(None),
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        """Column values keyed by column name."""
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}

    def __repr__(self) -> str:
        """Human-readable representation."""
        status = "published" if self.published_at is not None else f"pending (retries={self.retry_count})"
        return (
            f"OutboxMessage("
            f"id={self.id!r}, "
            f"event_type={self.event_type!r}, "
            f"seq={self.sequence_number}, "
            f"status={status}"
            f")"
        )


__all__ = [
    "SEQUENCE_NAME",
    "OutboxMessage",
    "outbox_sequence_counter",
    "outbox_sequence_seq",
]
