"""Scheduled outbox jobs.

- ``publish_outbox_batch``: drain one batch of due entries
- ``cleanup_outbox``: delete published entries past the retention window

Schedule them from the worker's scheduler, e.g. every few seconds for the
publish job and daily for cleanup.
"""

from __future__ import annotations

import logging
from typing import Any

from outbox_service.infra.messaging.broker import broker_context
from outbox_service.infra.outbox.entry import OutboxMessageType
from outbox_service.infra.outbox.maintenance import OutboxCleaner
from outbox_service.infra.outbox.metrics import PrometheusOutboxMetrics
from outbox_service.infra.outbox.processor import create_outbox_processor
from outbox_service.tasks.broker import broker

logger = logging.getLogger(__name__)


async def run_publish_batch(
    batch_size: int | None = None,
    message_type: str | None = None,
) -> dict[str, Any]:
    """Connect to RabbitMQ and publish one batch of due entries.

    Args:
        batch_size: Override ``OUTBOX_BATCH_SIZE``
        message_type: ``event``/``task`` to restrict the batch, None for all

    Returns:
        ``BatchResult.to_dict()``, or ``{"status": "skipped"}`` without RabbitMQ.
    """
    overrides: dict[str, Any] = {}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if message_type is not None:
        overrides["message_type"] = OutboxMessageType(message_type.upper())

    async with broker_context() as rabbit:
        if rabbit is None:
            logger.warning("RabbitMQ not configured, outbox batch skipped")
            return {"status": "skipped", "reason": "rabbitmq_not_configured"}
        processor = create_outbox_processor(rabbit, **overrides)
        result = await processor.run(run_once=True)

    summary = {"status": "completed", **result.to_dict()}
    logger.info("Outbox publish task finished", extra=summary)
    return summary


async def run_cleanup(
    retention_days: int | None = None,
    include_failed: bool = False,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Delete published entries older than the retention window.

    Returns:
        ``CleanupResult.to_dict()``.
    """
    cleaner = OutboxCleaner(metrics=PrometheusOutboxMetrics())
    result = await cleaner.run(
        retention_days=retention_days,
        include_failed=include_failed,
        dry_run=dry_run,
    )
    summary = {"status": "completed", **result.to_dict()}
    logger.info("Outbox cleanup task finished", extra=summary)
    return summary


if broker is not None:

    @broker.task()
    async def publish_outbox_batch(
        batch_size: int | None = None,
        message_type: str | None = None,
    ) -> dict[str, Any]:
        """Publish one batch of due outbox entries.

        Example:
            task = await publish_outbox_batch.kiq(batch_size=200)
            result = await task.wait_result()
        """
        return await run_publish_batch(batch_size=batch_size, message_type=message_type)

    @broker.task()
    async def cleanup_outbox(
        retention_days: int | None = None,
        include_failed: bool = False,
    ) -> dict[str, Any]:
        """Delete published outbox entries past the retention window."""
        return await run_cleanup(retention_days=retention_days, include_failed=include_failed)


__all__ = ["run_cleanup", "run_publish_batch"]
if broker is not None:
    __all__ += ["cleanup_outbox", "publish_outbox_batch"]
