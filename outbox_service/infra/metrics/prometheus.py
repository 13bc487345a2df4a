"""Prometheus metrics for the outbox."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Custom registry so the service exposes only its own metrics
REGISTRY = CollectorRegistry()

# Broker round-trips, 1ms to 10s
PUBLISH_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

# Cleanup runs delete in batches and may take minutes
CLEANUP_DURATION_BUCKETS = (0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0)

outbox_messages_enqueued_total = Counter(
    "outbox_messages_enqueued_total",
    "Messages staged in the outbox",
    ["message_type", "aggregate_type"],
    registry=REGISTRY,
)

outbox_messages_published_total = Counter(
    "outbox_messages_published_total",
    "Outbox messages delivered to their transport",
    ["message_type"],
    registry=REGISTRY,
)

outbox_messages_failed_total = Counter(
    "outbox_messages_failed_total",
    "Failed outbox publish attempts",
    ["message_type", "error_type"],
    registry=REGISTRY,
)

outbox_messages_retried_total = Counter(
    "outbox_messages_retried_total",
    "Outbox messages rescheduled for retry, by attempt number (capped at 5)",
    ["message_type", "retry_count"],
    registry=REGISTRY,
)

outbox_messages_pending = Gauge(
    "outbox_messages_pending",
    "Outbox messages waiting for delivery",
    ["message_type"],
    registry=REGISTRY,
)

outbox_publish_duration_seconds = Histogram(
    "outbox_publish_duration_seconds",
    "Time to publish one outbox message",
    ["message_type"],
    buckets=PUBLISH_LATENCY_BUCKETS,
    registry=REGISTRY,
)

outbox_cleanup_duration_seconds = Histogram(
    "outbox_cleanup_duration_seconds",
    "Duration of outbox cleanup runs",
    buckets=CLEANUP_DURATION_BUCKETS,
    registry=REGISTRY,
)

outbox_cleanup_deleted_total = Counter(
    "outbox_cleanup_deleted_total",
    "Outbox rows removed by cleanup",
    registry=REGISTRY,
)
