"""Outbox entry value object and its delivery state machine.

An entry is created pending, then either becomes published (terminal) or
failed-with-backoff. A failed entry is retried until it has failed
``MAX_RETRY_COUNT`` times, after which it is a dead letter: still stored and
countable, never fetched for delivery again.

    pending ──publish ok──▶ published
       │
       └──publish error──▶ failed (retry_count+1, next_retry_at)
                              │
                              ├── next_retry_at reached ──▶ eligible again
                              └── retry_count >= MAX_RETRY_COUNT ──▶ dead letter

Entries are immutable; transitions return new instances.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from outbox_service.core.database.base import ensure_utc, utcnow

MAX_RETRY_COUNT = 10
MAX_ERROR_LENGTH = 4000
BACKOFF_BASE_SECONDS = 1
MAX_BACKOFF_SECONDS = 300

# Storage format for timestamps, microsecond precision keeps ordering exact
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class OutboxMessageType(str, Enum):
    """Kind of message carried by an outbox entry.

    Attributes:
        EVENT: Domain event raised by an aggregate.
        TASK: Asynchronous task command for the job command bus.
    """

    EVENT = "EVENT"
    TASK = "TASK"

    def label(self) -> str:
        """Human readable name for CLI and dashboards."""
        return "Domain Event" if self is OutboxMessageType.EVENT else "Task Command"

    def is_event(self) -> bool:
        return self is OutboxMessageType.EVENT

    def is_task(self) -> bool:
        return self is OutboxMessageType.TASK


def truncate_error(error: str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Cut ``error`` to ``limit`` characters, marking the cut with ``...``."""
    if len(error) <= limit:
        return error
    return error[: limit - 3] + "..."


def format_datetime(value: datetime | None) -> str | None:
    """Render a timestamp in the storage format (UTC, microseconds)."""
    if value is None:
        return None
    return ensure_utc(value).strftime(DATETIME_FORMAT)  # type: ignore[union-attr]


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a storage timestamp; datetimes are normalized to UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        parsed = datetime.strptime(value, DATETIME_FORMAT)
    except ValueError:
        parsed = datetime.fromisoformat(value)
    return ensure_utc(parsed)


class OutboxEntry(BaseModel):
    """One outbound message staged in the outbox table.

    Attributes:
        id: Client-generated UUID string
        message_type: EVENT or TASK
        aggregate_type: Logical owner type (e.g. "Article")
        aggregate_id: Logical owner id
        event_type: Event type string (EVENT) or command type (TASK)
        payload: Serialized envelope (JSON text)
        topic: Transport topic, fixed at creation
        routing_key: Transport routing key, fixed at creation
        created_at: Creation time (UTC)
        published_at: Delivery time; set means terminal
        retry_count: Failed delivery attempts so far
        last_error: Last failure message, at most 4000 characters
        next_retry_at: Earliest time the entry may be retried
        sequence_number: Global order, assigned by the repository on insert
    """

    MAX_RETRY_COUNT: ClassVar[int] = MAX_RETRY_COUNT

    id: str = Field(min_length=1)
    message_type: OutboxMessageType
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: str
    topic: str
    routing_key: str
    created_at: datetime
    published_at: datetime | None = None
    retry_count: int = Field(default=0, ge=0)
    last_error: str | None = None
    next_retry_at: datetime | None = None
    sequence_number: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("created_at", "published_at", "next_retry_at", mode="after")
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @field_validator("last_error", mode="after")
    @classmethod
    def _truncate_error(cls, value: str | None) -> str | None:
        return truncate_error(value) if value is not None else None

    # ─────────────────────────────────────────────────────
    # Construction
    # ─────────────────────────────────────────────────────
    @classmethod
    def _create(
        cls,
        message_type: OutboxMessageType,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: str,
        topic: str,
        routing_key: str,
        sequence_number: int,
    ) -> OutboxEntry:
        return cls(
            id=str(uuid4()),
            message_type=message_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            topic=topic,
            routing_key=routing_key,
            created_at=utcnow(),
            sequence_number=sequence_number,
        )

    @classmethod
    def create_for_event(
        cls,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: str,
        topic: str,
        routing_key: str,
        sequence_number: int = 0,
    ) -> OutboxEntry:
        """Create a pending EVENT entry with a fresh id."""
        return cls._create(
            OutboxMessageType.EVENT,
            aggregate_type,
            aggregate_id,
            event_type,
            payload,
            topic,
            routing_key,
            sequence_number,
        )

    @classmethod
    def create_for_task(
        cls,
        aggregate_type: str,
        aggregate_id: str,
        command_type: str,
        payload: str,
        topic: str,
        routing_key: str,
        sequence_number: int = 0,
    ) -> OutboxEntry:
        """Create a pending TASK entry with a fresh id."""
        return cls._create(
            OutboxMessageType.TASK,
            aggregate_type,
            aggregate_id,
            command_type,
            payload,
            topic,
            routing_key,
            sequence_number,
        )

    @classmethod
    def from_array(cls, row: Mapping[str, Any]) -> OutboxEntry:
        """Rebuild an entry from its storage representation.

        Accepts the column-keyed mapping produced by :meth:`to_array` or read
        from the database; timestamps may be strings or datetimes.
        """
        return cls(
            id=str(row["id"]),
            message_type=OutboxMessageType(row["message_type"]),
            aggregate_type=row["aggregate_type"],
            aggregate_id=row["aggregate_id"],
            event_type=row["event_type"],
            payload=row["event_payload"],
            topic=row["topic"],
            routing_key=row["routing_key"],
            created_at=parse_datetime(row["created_at"]),
            published_at=parse_datetime(row.get("published_at")),
            retry_count=int(row.get("retry_count") or 0),
            last_error=row.get("last_error"),
            next_retry_at=parse_datetime(row.get("next_retry_at")),
            sequence_number=int(row.get("sequence_number") or 0),
        )

    def to_array(self) -> dict[str, Any]:
        """Storage representation keyed by column name."""
        return {
            "id": self.id,
            "message_type": self.message_type.value,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "event_type": self.event_type,
            "event_payload": self.payload,
            "topic": self.topic,
            "routing_key": self.routing_key,
            "created_at": format_datetime(self.created_at),
            "published_at": format_datetime(self.published_at),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "next_retry_at": format_datetime(self.next_retry_at),
            "sequence_number": self.sequence_number,
        }

    # ─────────────────────────────────────────────────────
    # Predicates
    # ─────────────────────────────────────────────────────
    def is_published(self) -> bool:
        return self.published_at is not None

    def is_dead_letter(self, max_retries: int = MAX_RETRY_COUNT) -> bool:
        """Unpublished and out of retries.

        Pass the poller's ``max_retries`` when it is lower than the hard cap.
        """
        return not self.is_published() and self.retry_count >= max_retries

    def is_eligible_for_retry(self, now: datetime | None = None) -> bool:
        """Whether a poller may attempt delivery at ``now`` (default: current time)."""
        if self.is_published():
            return False
        if self.retry_count >= MAX_RETRY_COUNT:
            return False
        if self.next_retry_at is None:
            return True
        return self.next_retry_at <= ensure_utc(now or utcnow())  # type: ignore[operator]

    # ─────────────────────────────────────────────────────
    # Transitions
    # ─────────────────────────────────────────────────────
    def mark_as_published(self, published_at: datetime | None = None) -> OutboxEntry:
        """Published copy; clears error state and keeps ``retry_count``."""
        return self.model_copy(
            update={
                "published_at": ensure_utc(published_at or utcnow()),
                "last_error": None,
                "next_retry_at": None,
            }
        )

    def mark_as_failed(self, error: str, next_retry_at: datetime) -> OutboxEntry:
        """Failed copy with one more retry counted and the next attempt scheduled."""
        return self.model_copy(
            update={
                "retry_count": self.retry_count + 1,
                "last_error": truncate_error(error),
                "next_retry_at": ensure_utc(next_retry_at),
                "published_at": None,
            }
        )

    def with_sequence_number(self, sequence_number: int) -> OutboxEntry:
        """Copy carrying the sequence number assigned on insert."""
        return self.model_copy(update={"sequence_number": sequence_number})

    @staticmethod
    def calculate_next_retry_delay(retry_count: int) -> int:
        """Backoff in seconds: ``min(2 ** retry_count, 300)``.

        >>> [OutboxEntry.calculate_next_retry_delay(r) for r in (0, 3, 8, 9, 15)]
        [1, 8, 256, 300, 300]
        """
        if retry_count < 0:
            msg = "retry_count must be >= 0"
            raise ValueError(msg)
        # Cap the exponent before exponentiation; 2**9 already exceeds the cap
        if retry_count >= 9:
            return MAX_BACKOFF_SECONDS
        return min(BACKOFF_BASE_SECONDS * 2**retry_count, MAX_BACKOFF_SECONDS)

    def next_retry_time(self, now: datetime | None = None) -> datetime:
        """``now`` plus the backoff for the current ``retry_count``."""
        base = ensure_utc(now or utcnow())
        return base + timedelta(seconds=self.calculate_next_retry_delay(self.retry_count))  # type: ignore[operator]

    def __repr__(self) -> str:
        """Human-readable representation."""
        if self.is_published():
            status = "published"
        elif self.is_dead_letter():
            status = "dead"
        else:
            status = f"pending (retries={self.retry_count})"
        return (
            f"OutboxEntry("
            f"id={self.id!r}, "
            f"type={self.message_type.value}, "
            f"event_type={self.event_type!r}, "
            f"seq={self.sequence_number}, "
            f"status={status}"
            f")"
        )


__all__ = [
    "DATETIME_FORMAT",
    "MAX_BACKOFF_SECONDS",
    "MAX_ERROR_LENGTH",
    "MAX_RETRY_COUNT",
    "OutboxEntry",
    "OutboxMessageType",
    "format_datetime",
    "parse_datetime",
    "truncate_error",
]
