"""Event store decorator that stages appended events in the outbox.

Wraps any ``EventStore``. ``append`` delegates first; only when the inner
store succeeded is one outbox entry per event written, in the same
transaction, as a single batch. A failing inner append leaves no entries
behind and its exception propagates unchanged.

Wiring:
    store = OutboxAwareEventStore(
        inner=sql_event_store,
        repository=OutboxRepository(session),
        serializer=DomainEventSerializer.from_settings(get_outbox_settings()),
        metrics=PrometheusOutboxMetrics(),
        enabled=get_outbox_settings().enabled,
    )
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from outbox_service.infra.outbox.entry import OutboxEntry, OutboxMessageType
from outbox_service.infra.outbox.metrics import NullOutboxMetrics
from outbox_service.infra.outbox.naming import extract_aggregate_type

if TYPE_CHECKING:
    from outbox_service.core.events.message import DomainEventStream, DomainMessage
    from outbox_service.core.events.serializer import DomainEventSerializer
    from outbox_service.infra.outbox.ports import EventStore, OutboxMetrics
    from outbox_service.infra.outbox.repository import OutboxRepository

logger = logging.getLogger(__name__)


class OutboxAwareEventStore:
    """``EventStore`` that also writes an outbox entry for every appended event.

    Args:
        inner: Event store that actually persists the stream
        repository: Outbox repository bound to the same transaction as ``inner``
        serializer: Builds envelopes, topics and routing keys
        metrics: Metrics sink (defaults to no-op)
        enabled: Initial state of the outbox toggle
    """

    def __init__(
        self,
        inner: EventStore,
        repository: OutboxRepository,
        serializer: DomainEventSerializer,
        metrics: OutboxMetrics | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self._inner = inner
        self._repository = repository
        self._serializer = serializer
        self._metrics = metrics or NullOutboxMetrics()
        self._enabled = threading.Event()
        if enabled:
            self._enabled.set()

    async def append(self, aggregate_id: str, event_stream: DomainEventStream) -> None:
        await self._inner.append(aggregate_id, event_stream)

        if not self.is_enabled():
            logger.debug(
                "Outbox disabled, event stream appended without outbox entries",
                extra={"aggregate_id": str(aggregate_id), "event_count": len(event_stream)},
            )
            return

        entries = [self._create_entry(str(aggregate_id), message) for message in event_stream]
        if not entries:
            return

        stored = await self._repository.save_all(entries)
        for entry in stored:
            self._metrics.record_message_enqueued(OutboxMessageType.EVENT, entry.aggregate_type)

        logger.debug(
            "Outbox entries created for event stream",
            extra={
                "aggregate_id": str(aggregate_id),
                "entry_count": len(stored),
                "event_types": [entry.event_type for entry in stored],
            },
        )

    async def load(self, aggregate_id: str) -> DomainEventStream:
        return await self._inner.load(aggregate_id)

    async def load_from_playhead(self, aggregate_id: str, playhead: int) -> DomainEventStream:
        return await self._inner.load_from_playhead(aggregate_id, playhead)

    def _create_entry(self, aggregate_id: str, message: DomainMessage) -> OutboxEntry:
        event_type = self._serializer.extract_event_type(message)
        return OutboxEntry.create_for_event(
            aggregate_type=self._aggregate_type(message, event_type),
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=self._serializer.to_json(message),
            topic=self._serializer.extract_topic(message),
            routing_key=self._serializer.extract_routing_key(message),
        )

    @staticmethod
    def _aggregate_type(message: DomainMessage, event_type: str) -> str:
        explicit = message.metadata.get("aggregate_type")
        if isinstance(explicit, str) and explicit:
            return explicit
        return extract_aggregate_type(event_type)

    # ─────────────────────────────────────────────────────
    # Runtime toggle
    # ─────────────────────────────────────────────────────
    def enable(self) -> None:
        self._enabled.set()
        logger.info("Outbox enabled for event store")

    def disable(self) -> None:
        self._enabled.clear()
        logger.info("Outbox disabled for event store")

    def is_enabled(self) -> bool:
        return self._enabled.is_set()


__all__ = ["OutboxAwareEventStore"]
