"""Event-sourcing envelopes: a recorded event and an ordered stream of them."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from outbox_service.core.database.base import utcnow
from outbox_service.core.events.base import DomainEvent

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class DomainMessage(BaseModel):
    """A domain event as recorded for one aggregate.

    Attributes:
        aggregate_id: Identifier of the aggregate that raised the event
        playhead: Position of the event in the aggregate's own history
        metadata: Envelope metadata (``aggregate_type`` overrides attribution)
        payload: The domain event itself
        recorded_on: When the event store recorded the event (UTC)
    """

    aggregate_id: str = Field(min_length=1)
    playhead: int = Field(ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    payload: DomainEvent
    recorded_on: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def record_now(
        cls,
        aggregate_id: str,
        playhead: int,
        payload: DomainEvent,
        metadata: dict[str, Any] | None = None,
    ) -> DomainMessage:
        """Record ``payload`` at ``playhead`` with the current time."""
        return cls(
            aggregate_id=aggregate_id,
            playhead=playhead,
            metadata=metadata or {},
            payload=payload,
        )

    @property
    def event_type(self) -> str:
        """Type string of the wrapped event."""
        return self.payload.get_event_type()


class DomainEventStream:
    """Ordered, immutable sequence of ``DomainMessage`` objects."""

    __slots__ = ("_messages",)

    def __init__(self, messages: Iterable[DomainMessage] = ()) -> None:
        self._messages = tuple(messages)

    def __iter__(self) -> Iterator[DomainMessage]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> DomainMessage:
        return self._messages[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DomainEventStream):
            return NotImplemented
        return self._messages == other._messages

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"DomainEventStream(messages={len(self._messages)})"


__all__ = ["DomainEventStream", "DomainMessage"]
