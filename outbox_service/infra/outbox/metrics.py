"""Metrics sinks for outbox activity."""

from __future__ import annotations

from typing import TYPE_CHECKING

from outbox_service.infra.metrics.prometheus import (
    outbox_cleanup_deleted_total,
    outbox_cleanup_duration_seconds,
    outbox_messages_enqueued_total,
    outbox_messages_failed_total,
    outbox_messages_pending,
    outbox_messages_published_total,
    outbox_messages_retried_total,
    outbox_publish_duration_seconds,
)

if TYPE_CHECKING:
    from outbox_service.infra.outbox.entry import OutboxMessageType

# Keeps the retry_count label cardinality bounded
RETRY_LABEL_CAP = 5


def retry_label(retry_count: int) -> str:
    """Label value for a retry attempt, ``"5"`` for anything at or above the cap."""
    return str(min(retry_count, RETRY_LABEL_CAP))


class PrometheusOutboxMetrics:
    """Records outbox activity on the service Prometheus registry."""

    def record_message_enqueued(self, message_type: OutboxMessageType, aggregate_type: str) -> None:
        outbox_messages_enqueued_total.labels(
            message_type=message_type.value,
            aggregate_type=aggregate_type,
        ).inc()

    def record_message_published(self, message_type: OutboxMessageType, duration: float) -> None:
        outbox_messages_published_total.labels(message_type=message_type.value).inc()
        outbox_publish_duration_seconds.labels(message_type=message_type.value).observe(duration)

    def record_publish_failure(self, message_type: OutboxMessageType, error_type: str) -> None:
        outbox_messages_failed_total.labels(
            message_type=message_type.value,
            error_type=error_type,
        ).inc()

    def record_retry_attempt(self, message_type: OutboxMessageType, retry_count: int) -> None:
        outbox_messages_retried_total.labels(
            message_type=message_type.value,
            retry_count=retry_label(retry_count),
        ).inc()

    def set_pending_count(self, message_type: OutboxMessageType, count: int) -> None:
        outbox_messages_pending.labels(message_type=message_type.value).set(count)

    def record_cleanup(self, deleted: int, duration: float) -> None:
        outbox_cleanup_deleted_total.inc(deleted)
        outbox_cleanup_duration_seconds.observe(duration)


class NullOutboxMetrics:
    """Discards everything. Used when metrics are not wanted (tests, scripts)."""

    def record_message_enqueued(self, message_type: OutboxMessageType, aggregate_type: str) -> None:
        pass

    def record_message_published(self, message_type: OutboxMessageType, duration: float) -> None:
        pass

    def record_publish_failure(self, message_type: OutboxMessageType, error_type: str) -> None:
        pass

    def record_retry_attempt(self, message_type: OutboxMessageType, retry_count: int) -> None:
        pass

    def set_pending_count(self, message_type: OutboxMessageType, count: int) -> None:
        pass

    def record_cleanup(self, deleted: int, duration: float) -> None:
        pass


__all__ = ["NullOutboxMetrics", "PrometheusOutboxMetrics", "retry_label"]
