"""Domain event primitives: base class, registry, envelopes and serializer."""

from outbox_service.core.events.base import DomainEvent
from outbox_service.core.events.message import DomainEventStream, DomainMessage
from outbox_service.core.events.registry import EventRegistry
from outbox_service.core.events.serializer import (
    DomainEventSerializer,
    event_domain,
    to_snake_case,
)

__all__ = [
    "DomainEvent",
    "DomainEventSerializer",
    "DomainEventStream",
    "DomainMessage",
    "EventRegistry",
    "event_domain",
    "to_snake_case",
]
