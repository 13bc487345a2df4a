"""Envelope serializer and address derivation for domain events.

Consumers bind queues by topic and routing key, so both names are derived
deterministically from the event type:

>>> to_snake_case("ArticleCreated")
'article_created'
>>> event_domain("article.created")
'article'

With the default prefixes an ``ArticleCreated`` event with type
``"article.created"`` is stored with topic ``events.article`` and routing key
``event.article_created``.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from outbox_service.core.events.message import DomainMessage
    from outbox_service.core.events.registry import EventRegistry
    from outbox_service.core.settings import OutboxSettings

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

DEFAULT_DOMAIN = "default"


def to_snake_case(name: str) -> str:
    """Convert a CamelCase class name to snake_case."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def event_domain(event_type: str, default: str = DEFAULT_DOMAIN) -> str:
    """First dotted segment of an event type, lower-cased."""
    head = event_type.split(".", 1)[0].strip().lower()
    return head or default


class DomainEventSerializer:
    """Turn ``DomainMessage`` objects into storable envelopes and addresses.

    The envelope embeds everything needed to rebuild the message: the
    aggregate id (under ``uuid``), playhead, metadata, the event's type,
    version and field values, and the recording timestamp.
    """

    def __init__(
        self,
        *,
        topic_prefix: str = "events.",
        routing_key_prefix: str = "event.",
    ) -> None:
        self.topic_prefix = topic_prefix
        self.routing_key_prefix = routing_key_prefix

    @classmethod
    def from_settings(cls, settings: OutboxSettings) -> DomainEventSerializer:
        """Build a serializer using the configured prefixes."""
        return cls(
            topic_prefix=settings.topic_prefix,
            routing_key_prefix=settings.routing_key_prefix,
        )

    def serialize(self, message: DomainMessage) -> dict[str, Any]:
        """Envelope for ``message`` as a JSON-compatible dict."""
        event = message.payload
        return {
            "uuid": message.aggregate_id,
            "playhead": message.playhead,
            "metadata": message.metadata,
            "payload": {
                "class": event.get_event_type(),
                "version": event.get_event_version(),
                "payload": event.model_dump(mode="json"),
            },
            "recorded_on": message.recorded_on.isoformat(),
        }

    def deserialize(self, envelope: Mapping[str, Any], registry: EventRegistry) -> DomainMessage:
        """Rebuild the ``DomainMessage`` from an envelope made by :meth:`serialize`.

        Raises:
            KeyError: If the envelope lacks a field or the event type is not registered.
            pydantic.ValidationError: If the stored fields don't fit the event class.
        """
        from outbox_service.core.events.message import DomainMessage

        body = envelope["payload"]
        event = registry.deserialize(body["class"], body["payload"], version=body.get("version"))
        return DomainMessage(
            aggregate_id=envelope["uuid"],
            playhead=envelope["playhead"],
            metadata=envelope.get("metadata") or {},
            payload=event,
            recorded_on=envelope["recorded_on"],
        )

    def to_json(self, message: DomainMessage) -> str:
        """Envelope for ``message`` encoded as JSON text."""
        return json.dumps(self.serialize(message), ensure_ascii=False, default=str)

    def extract_event_type(self, message: DomainMessage) -> str:
        """Canonical type string stored in the ``event_type`` column."""
        return message.payload.get_event_type()

    def extract_topic(self, message: DomainMessage) -> str:
        """Topic, e.g. ``events.article`` for ``article.created``."""
        return f"{self.topic_prefix}{event_domain(self.extract_event_type(message))}"

    def extract_routing_key(self, message: DomainMessage) -> str:
        """Routing key, e.g. ``event.article_created`` for ``ArticleCreated``."""
        return f"{self.routing_key_prefix}{to_snake_case(type(message.payload).__name__)}"


__all__ = [
    "DEFAULT_DOMAIN",
    "DomainEventSerializer",
    "event_domain",
    "to_snake_case",
]
