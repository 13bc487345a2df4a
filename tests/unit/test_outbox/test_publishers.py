"""Tests for the outbox publishers."""
from __future__ import annotations

import json
from typing import ClassVar
from unittest.mock import AsyncMock, MagicMock

import pytest

from outbox_service.core.events.base import DomainEvent
from outbox_service.core.events.message import DomainMessage
from outbox_service.core.events.registry import EventRegistry
from outbox_service.core.events.serializer import DomainEventSerializer
from outbox_service.infra.outbox.entry import OutboxMessageType
from outbox_service.infra.outbox.exceptions import OutboxPublishError
from outbox_service.infra.outbox.publishers import EventPublisher, OutboxPublisher, TaskPublisher


class ArticleCreated(DomainEvent):
    event_type: ClassVar[str] = "article.created"

    article_id: str
    title: str


class ArticleCreatedV2(DomainEvent):
    event_type: ClassVar[str] = "article.created"
    event_version: ClassVar[int] = 2

    article_id: str
    title: str
    slug: str = ""


def _envelope(event: DomainEvent) -> str:
    message = DomainMessage.record_now("agg-1", 0, event)
    return DomainEventSerializer().to_json(message)


@pytest.fixture
def transport() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def event_publisher(transport) -> EventPublisher:
    publisher = EventPublisher(transport)
    publisher.register_event_class(ArticleCreated)
    return publisher


@pytest.fixture
def command_producer() -> AsyncMock:
    return AsyncMock()


# ──────────────────────────────────────────────────────────────
# EventPublisher
# ──────────────────────────────────────────────────────────────


class TestEventPublisher:
    """Tests for EventPublisher."""

    @pytest.mark.asyncio
    async def test_rebuilds_and_publishes_event(self, event_publisher, transport, make_event_entry):
        """The stored envelope is turned back into the original event."""
        event = ArticleCreated(article_id="a-1", title="Hello", correlation_id="corr-1")
        entry = make_event_entry(payload=_envelope(event))

        await event_publisher.publish(entry)

        transport.publish_event_to_queue.assert_awaited_once()
        published = transport.publish_event_to_queue.await_args.args[0]
        assert isinstance(published, ArticleCreated)
        assert published == event
        assert transport.publish_event_to_queue.await_args.kwargs == {
            "topic": "events.article",
            "routing_key": "event.article_created",
        }

    @pytest.mark.asyncio
    async def test_uses_recorded_version(self, transport, make_event_entry):
        """The version in the envelope selects the matching class."""
        publisher = EventPublisher(transport)
        publisher.register_event_classes(ArticleCreated, ArticleCreatedV2)
        entry = make_event_entry(payload=_envelope(ArticleCreated(article_id="a-1", title="t")))

        await publisher.publish(entry)

        assert type(transport.publish_event_to_queue.await_args.args[0]) is ArticleCreated

    @pytest.mark.asyncio
    async def test_shared_registry(self, transport, make_event_entry):
        """A registry passed in is used for lookups."""
        registry = EventRegistry()
        registry.register(ArticleCreated)
        publisher = EventPublisher(transport, registry=registry)

        await publisher.publish(make_event_entry(payload=_envelope(ArticleCreated(article_id="a", title="t"))))

        assert publisher.registry is registry
        transport.publish_event_to_queue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bare_field_payload_uses_entry_type(self, event_publisher, transport, make_event_entry):
        """A payload holding only the fields is resolved through the entry's event_type."""
        entry = make_event_entry(payload=json.dumps({"payload": {"article_id": "a-1", "title": "Hi"}}))

        await event_publisher.publish(entry)

        assert transport.publish_event_to_queue.await_args.args[0].title == "Hi"

    @pytest.mark.asyncio
    async def test_invalid_json(self, event_publisher, make_event_entry):
        """Unparseable payloads fail deserialization."""
        with pytest.raises(OutboxPublishError, match="Invalid JSON payload"):
            await event_publisher.publish(make_event_entry(payload="{not json"))

    @pytest.mark.asyncio
    async def test_non_object_envelope(self, event_publisher, make_event_entry):
        with pytest.raises(OutboxPublishError, match="Envelope must be a JSON object"):
            await event_publisher.publish(make_event_entry(payload="[1, 2]"))

    @pytest.mark.asyncio
    async def test_unregistered_type(self, transport, make_event_entry):
        """Unknown event types report how to register them."""
        publisher = EventPublisher(transport)
        entry = make_event_entry(payload=_envelope(ArticleCreated(article_id="a", title="t")))

        with pytest.raises(OutboxPublishError, match="Cannot resolve event class for type: article.created") as exc_info:
            await publisher.publish(entry)

        assert exc_info.value.event_type == "article.created"
        transport.publish_event_to_queue.assert_not_called()

    @pytest.mark.asyncio
    async def test_fields_not_matching_class(self, event_publisher, transport, make_event_entry):
        """Validation errors surface as deserialization failures."""
        payload = json.dumps(
            {"payload": {"class": "article.created", "version": 1, "payload": {"article_id": "a-1"}}}
        )

        with pytest.raises(OutboxPublishError, match="Failed to deserialize event article.created"):
            await event_publisher.publish(make_event_entry(payload=payload))

        transport.publish_event_to_queue.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self, event_publisher, transport, make_event_entry):
        """Transport failures are not wrapped."""
        transport.publish_event_to_queue.side_effect = ConnectionError("broker gone")
        entry = make_event_entry(payload=_envelope(ArticleCreated(article_id="a", title="t")))

        with pytest.raises(ConnectionError):
            await event_publisher.publish(entry)

    def test_supports_only_events(self, event_publisher):
        assert event_publisher.supports(OutboxMessageType.EVENT)
        assert not event_publisher.supports(OutboxMessageType.TASK)


# ──────────────────────────────────────────────────────────────
# TaskPublisher
# ──────────────────────────────────────────────────────────────


class TestTaskPublisher:
    """Tests for TaskPublisher."""

    @pytest.mark.asyncio
    async def test_sends_command_to_entry_topic(self, command_producer, make_task_entry):
        """The stored payload is sent to the entry's route."""
        publisher = TaskPublisher(command_producer)

        await publisher.publish(make_task_entry(topic="media_bus"))

        command_producer.send_command.assert_awaited_once_with(
            "media_bus", {"type": "article.reindex", "args": ["p-1"]}
        )

    @pytest.mark.asyncio
    async def test_falls_back_to_configured_route(self, command_producer, make_task_entry):
        publisher = TaskPublisher(command_producer, route="fallback_bus")

        await publisher.publish(make_task_entry(topic=""))

        assert command_producer.send_command.await_args.args[0] == "fallback_bus"

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ("{oops", "Invalid JSON payload"),
            ('"text"', "Payload must be a JSON object"),
            ('{"args": []}', "Missing required key: type"),
            ('{"type": "", "args": []}', "Missing required key: type"),
            ('{"type": "a.b"}', "Missing or invalid key: args \\(expected array\\)"),
            ('{"type": "a.b", "args": {"x": 1}}', "Missing or invalid key: args"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_payloads(self, command_producer, make_task_entry, payload, message):
        """Malformed commands are rejected before sending."""
        entry = make_task_entry(payload=payload)

        with pytest.raises(OutboxPublishError, match=message) as exc_info:
            await TaskPublisher(command_producer).publish(entry)

        assert exc_info.value.message_id == entry.id
        assert str(exc_info.value).startswith(f"Invalid task message format for outbox entry {entry.id}")
        command_producer.send_command.assert_not_called()

    def test_supports_only_tasks(self, command_producer):
        publisher = TaskPublisher(command_producer)

        assert publisher.supports(OutboxMessageType.TASK)
        assert not publisher.supports(OutboxMessageType.EVENT)


# ──────────────────────────────────────────────────────────────
# OutboxPublisher
# ──────────────────────────────────────────────────────────────


def _fake_publisher(message_type: OutboxMessageType) -> MagicMock:
    publisher = MagicMock()
    publisher.publish = AsyncMock()
    publisher.supports.side_effect = lambda t: t is message_type
    return publisher


class TestOutboxPublisher:
    """Tests for OutboxPublisher routing."""

    @pytest.mark.asyncio
    async def test_routes_by_message_type(self, make_event_entry, make_task_entry):
        """Each entry goes to the publisher that supports its type."""
        events = _fake_publisher(OutboxMessageType.EVENT)
        tasks = _fake_publisher(OutboxMessageType.TASK)
        publisher = OutboxPublisher(events, tasks)
        event_entry, task_entry = make_event_entry(), make_task_entry()

        await publisher.publish(event_entry)
        await publisher.publish(task_entry)

        events.publish.assert_awaited_once_with(event_entry)
        tasks.publish.assert_awaited_once_with(task_entry)

    @pytest.mark.asyncio
    async def test_unsupported_type(self, make_task_entry):
        """An entry no delegate supports is rejected."""
        events = _fake_publisher(OutboxMessageType.EVENT)
        publisher = OutboxPublisher(events, _fake_publisher(OutboxMessageType.EVENT))

        assert not publisher.supports(OutboxMessageType.TASK)
        with pytest.raises(OutboxPublishError, match="No publisher supports outbox message type: TASK"):
            await publisher.publish(make_task_entry())

    @pytest.mark.asyncio
    async def test_delegate_error_is_reraised(self, make_event_entry):
        """Delegate exceptions propagate unchanged."""
        events = _fake_publisher(OutboxMessageType.EVENT)
        events.publish.side_effect = TimeoutError("publish timed out")
        publisher = OutboxPublisher(events, _fake_publisher(OutboxMessageType.TASK))

        with pytest.raises(TimeoutError, match="publish timed out"):
            await publisher.publish(make_event_entry())

    @pytest.mark.asyncio
    async def test_opens_producer_span(self, make_event_entry):
        """Each publish runs inside an outbox.publish span."""
        tracer = MagicMock()
        publisher = OutboxPublisher(
            _fake_publisher(OutboxMessageType.EVENT),
            _fake_publisher(OutboxMessageType.TASK),
            tracer=tracer,
        )
        entry = make_event_entry()

        await publisher.publish(entry)

        name = tracer.start_as_current_span.call_args.args[0]
        attributes = tracer.start_as_current_span.call_args.kwargs["attributes"]
        assert name == "outbox.publish"
        assert attributes["outbox.message_id"] == entry.id
        assert attributes["messaging.destination.name"] == "events.article"
