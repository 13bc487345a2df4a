"""Collaborator interfaces the outbox decorates or publishes to.

The outbox wraps an existing event store and command producer, and hands
stored entries back to real transports. Each collaborator is described as a
``Protocol`` so any implementation with the right shape can be plugged in.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from outbox_service.core.events.base import DomainEvent
    from outbox_service.core.events.message import DomainEventStream
    from outbox_service.infra.outbox.entry import OutboxEntry, OutboxMessageType


class EventStore(Protocol):
    """Append-only store of aggregate event streams."""

    async def append(self, aggregate_id: str, event_stream: DomainEventStream) -> None:
        """Append ``event_stream`` to the history of ``aggregate_id``."""
        ...

    async def load(self, aggregate_id: str) -> DomainEventStream:
        """Full history of ``aggregate_id``."""
        ...

    async def load_from_playhead(self, aggregate_id: str, playhead: int) -> DomainEventStream:
        """History of ``aggregate_id`` starting at ``playhead``."""
        ...


class CommandProducer(Protocol):
    """Command bus used for asynchronous task dispatch."""

    async def send_command(
        self,
        route: str,
        message: Any,
        need_reply: bool = False,
    ) -> Any:
        """Send ``message`` to ``route``; returns the reply when ``need_reply``."""
        ...

    async def send_event(self, topic: str, message: Any) -> Any:
        """Broadcast ``message`` on ``topic``."""
        ...


class EventTransport(Protocol):
    """Transport that delivers rebuilt domain events to consumers."""

    async def publish_event_to_queue(
        self,
        event: DomainEvent,
        *,
        topic: str | None = None,
        routing_key: str | None = None,
    ) -> None:
        """Publish ``event``; topic and routing key default to the event's own."""
        ...


class MessagePublisher(Protocol):
    """Publishes one stored outbox entry to its real transport."""

    async def publish(self, entry: OutboxEntry) -> None: ...

    def supports(self, message_type: OutboxMessageType) -> bool: ...


class OutboxMetrics(Protocol):
    """Metrics sink for outbox activity."""

    def record_message_enqueued(self, message_type: OutboxMessageType, aggregate_type: str) -> None: ...

    def record_message_published(self, message_type: OutboxMessageType, duration: float) -> None: ...

    def record_publish_failure(self, message_type: OutboxMessageType, error_type: str) -> None: ...

    def record_retry_attempt(self, message_type: OutboxMessageType, retry_count: int) -> None: ...

    def set_pending_count(self, message_type: OutboxMessageType, count: int) -> None: ...

    def record_cleanup(self, deleted: int, duration: float) -> None: ...


__all__ = [
    "CommandProducer",
    "EventStore",
    "EventTransport",
    "MessagePublisher",
    "OutboxMetrics",
]
