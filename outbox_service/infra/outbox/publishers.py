"""Publishers that turn stored outbox entries back into transport messages.

- ``EventPublisher`` rebuilds domain events from their envelopes and hands
  them to an ``EventTransport``.
- ``TaskPublisher`` validates stored commands and sends them through a
  ``CommandProducer``.
- ``OutboxPublisher`` routes an entry to whichever of the two supports its
  message type, inside an ``outbox.publish`` trace span.

Publishers do not retry. Any exception reaches the poller, which records the
failure on the entry and reschedules it.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import SpanKind
from pydantic import ValidationError

from outbox_service.core.events.registry import EventRegistry
from outbox_service.infra.outbox.entry import OutboxMessageType
from outbox_service.infra.outbox.exceptions import OutboxPublishError

if TYPE_CHECKING:
    from outbox_service.core.events.base import DomainEvent
    from outbox_service.infra.outbox.entry import OutboxEntry
    from outbox_service.infra.outbox.ports import CommandProducer, EventTransport, MessagePublisher

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publishes EVENT entries.

    Event classes must be registered explicitly, either on the registry passed
    in or through :meth:`register_event_class`.

    Args:
        transport: Transport that delivers the rebuilt events
        registry: Event type registry (a private one is created when omitted)
    """

    def __init__(self, transport: EventTransport, registry: EventRegistry | None = None) -> None:
        self._transport = transport
        self._registry = registry if registry is not None else EventRegistry()

    @property
    def registry(self) -> EventRegistry:
        return self._registry

    def register_event_class(self, event_class: type[DomainEvent]) -> None:
        self._registry.register(event_class)

    def register_event_classes(self, *event_classes: type[DomainEvent]) -> None:
        for event_class in event_classes:
            self._registry.register(event_class)

    async def publish(self, entry: OutboxEntry) -> None:
        """Rebuild the event stored in ``entry`` and publish it.

        Raises:
            OutboxPublishError: Payload is not valid JSON, the event type is
                not registered, or the stored fields don't fit the class.
        """
        try:
            envelope = json.loads(entry.payload)
        except ValueError as exc:
            raise OutboxPublishError.deserialization_failed(
                entry.event_type, f"Invalid JSON payload: {exc}"
            ) from exc

        event_type, version, data = self._unwrap(envelope, entry.event_type)
        try:
            event = self._registry.deserialize(event_type, data, version=version)
        except KeyError as exc:
            raise OutboxPublishError.event_class_not_found(event_type) from exc
        except ValidationError as exc:
            raise OutboxPublishError.deserialization_failed(event_type, str(exc)) from exc

        await self._transport.publish_event_to_queue(
            event,
            topic=entry.topic,
            routing_key=entry.routing_key,
        )
        logger.debug(
            "Event published from outbox",
            extra={
                "entry_id": entry.id,
                "event_type": event_type,
                "event_id": event.event_id,
                "topic": entry.topic,
                "routing_key": entry.routing_key,
            },
        )

    @staticmethod
    def _unwrap(envelope: Any, fallback_type: str) -> tuple[str, int | None, dict[str, Any]]:
        """Pull ``(event_type, version, fields)`` out of a stored envelope.

        Understands the full envelope (``payload`` holding ``class``,
        ``version`` and the field ``payload``), an envelope whose ``payload``
        is the bare field mapping, and a bare field mapping.
        """
        if not isinstance(envelope, dict):
            raise OutboxPublishError.deserialization_failed(
                fallback_type, "Envelope must be a JSON object"
            )
        body = envelope.get("payload")
        if not isinstance(body, dict):
            return fallback_type, None, envelope
        fields = body.get("payload")
        if not isinstance(fields, dict):
            return fallback_type, None, body
        event_type = body.get("class") or fallback_type
        version = body.get("version")
        return event_type, version if isinstance(version, int) else None, fields

    def supports(self, message_type: OutboxMessageType) -> bool:
        return message_type is OutboxMessageType.EVENT


class TaskPublisher:
    """Publishes TASK entries through the real command producer.

    Args:
        producer: The undecorated command producer; passing the outbox-aware
            one would stage the command again instead of sending it
        route: Route used when an entry carries no topic
    """

    def __init__(self, producer: CommandProducer, route: str = "job_command_bus") -> None:
        self._producer = producer
        self._route = route

    async def publish(self, entry: OutboxEntry) -> None:
        """Validate the stored command and send it.

        Raises:
            OutboxPublishError: Payload is not a JSON object, ``type`` is
                missing, or ``args`` is missing or not a list.
        """
        try:
            payload = json.loads(entry.payload)
        except ValueError as exc:
            raise OutboxPublishError.invalid_task_format(entry.id, f"Invalid JSON payload: {exc}") from exc

        if not isinstance(payload, dict):
            raise OutboxPublishError.invalid_task_format(entry.id, "Payload must be a JSON object")
        if not isinstance(payload.get("type"), str) or not payload["type"]:
            raise OutboxPublishError.invalid_task_format(entry.id, "Missing required key: type")
        if not isinstance(payload.get("args"), list):
            raise OutboxPublishError.invalid_task_format(
                entry.id, "Missing or invalid key: args (expected array)"
            )

        route = entry.topic or self._route
        await self._producer.send_command(route, payload)
        logger.debug(
            "Task command sent from outbox",
            extra={"entry_id": entry.id, "command_type": payload["type"], "route": route},
        )

    def supports(self, message_type: OutboxMessageType) -> bool:
        return message_type is OutboxMessageType.TASK


class OutboxPublisher:
    """Routes entries to the publisher for their message type.

    Args:
        event_publisher: Handles EVENT entries
        task_publisher: Handles TASK entries
        tracer: OpenTelemetry tracer (module tracer by default)
    """

    def __init__(
        self,
        event_publisher: MessagePublisher,
        task_publisher: MessagePublisher,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self._publishers: tuple[MessagePublisher, ...] = (event_publisher, task_publisher)
        self._tracer = tracer or trace.get_tracer(__name__)

    def supports(self, message_type: OutboxMessageType) -> bool:
        return any(publisher.supports(message_type) for publisher in self._publishers)

    def _publisher_for(self, message_type: OutboxMessageType) -> MessagePublisher:
        for publisher in self._publishers:
            if publisher.supports(message_type):
                return publisher
        raise OutboxPublishError.unsupported_message_type(message_type.value)

    async def publish(self, entry: OutboxEntry) -> None:
        """Publish ``entry``; delegate exceptions propagate unchanged."""
        publisher = self._publisher_for(entry.message_type)
        log_context = {
            "entry_id": entry.id,
            "message_type": entry.message_type.value,
            "event_type": entry.event_type,
            "aggregate_type": entry.aggregate_type,
            "aggregate_id": entry.aggregate_id,
            "sequence_number": entry.sequence_number,
            "retry_count": entry.retry_count,
        }

        # The span records the exception and sets ERROR status on failure
        with self._tracer.start_as_current_span(
            "outbox.publish",
            kind=SpanKind.PRODUCER,
            attributes={
                "messaging.system": "outbox",
                "messaging.destination.name": entry.topic,
                "outbox.message_id": entry.id,
                "outbox.message_type": entry.message_type.value,
                "outbox.event_type": entry.event_type,
                "outbox.aggregate_type": entry.aggregate_type,
                "outbox.aggregate_id": entry.aggregate_id,
                "outbox.sequence_number": entry.sequence_number,
                "outbox.retry_count": entry.retry_count,
            },
        ):
            try:
                await publisher.publish(entry)
            except Exception as exc:
                logger.error(
                    "Failed to publish outbox entry",
                    extra={**log_context, "error": str(exc), "error_class": type(exc).__name__},
                )
                raise

        logger.info("Outbox entry published", extra=log_context)


__all__ = ["EventPublisher", "OutboxPublisher", "TaskPublisher"]
