"""Transactional outbox.

Write side:
- ``OutboxAwareEventStore`` stages every appended domain message as an EVENT
  entry in the same transaction as the event store write.
- ``OutboxAwareTaskProducer`` stages commands as TASK entries instead of
  sending them.

Read side:
- ``OutboxProcessor`` polls due entries in sequence order and hands them to
  ``OutboxPublisher``, which routes them to ``EventPublisher`` or
  ``TaskPublisher``.
- ``OutboxCleaner`` deletes published entries after the retention window.

Delivery is at-least-once; consumers must be idempotent.
"""

from __future__ import annotations

from outbox_service.infra.outbox.entry import (
    MAX_RETRY_COUNT,
    OutboxEntry,
    OutboxMessageType,
)
from outbox_service.infra.outbox.event_store import OutboxAwareEventStore
from outbox_service.infra.outbox.exceptions import (
    OutboxPersistenceError,
    OutboxPublishError,
    ReplyNotSupportedError,
)
from outbox_service.infra.outbox.maintenance import CleanupResult, OutboxCleaner
from outbox_service.infra.outbox.metrics import NullOutboxMetrics, PrometheusOutboxMetrics
from outbox_service.infra.outbox.processor import (
    BatchResult,
    OutboxProcessor,
    classify_error,
    create_outbox_processor,
    get_outbox_processor,
    start_outbox_processor,
    stop_outbox_processor,
)
from outbox_service.infra.outbox.publishers import EventPublisher, OutboxPublisher, TaskPublisher
from outbox_service.infra.outbox.repository import OutboxRepository
from outbox_service.infra.outbox.task_producer import OutboxAwareTaskProducer

__all__ = [
    "MAX_RETRY_COUNT",
    "BatchResult",
    "CleanupResult",
    "EventPublisher",
    "NullOutboxMetrics",
    "OutboxAwareEventStore",
    "OutboxAwareTaskProducer",
    "OutboxCleaner",
    "OutboxEntry",
    "OutboxMessageType",
    "OutboxPersistenceError",
    "OutboxProcessor",
    "OutboxPublishError",
    "OutboxPublisher",
    "OutboxRepository",
    "PrometheusOutboxMetrics",
    "ReplyNotSupportedError",
    "TaskPublisher",
    "classify_error",
    "create_outbox_processor",
    "get_outbox_processor",
    "start_outbox_processor",
    "stop_outbox_processor",
]
