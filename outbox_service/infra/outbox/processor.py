"""Background outbox processor for reliable message publishing.

The processor runs as a background task that:
1. Polls the outbox table for due entries in sequence order
2. Publishes each entry through the routing ``OutboxPublisher``
3. Marks entries as published or schedules retries on failure

The processor uses:
- Batch processing for efficiency
- FOR UPDATE SKIP LOCKED for concurrent processing
- Exponential backoff for failed entries
- A commit per entry so one bad entry never rolls back its neighbours
- Graceful shutdown handling
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy.exc import SQLAlchemyError

from outbox_service.core.database.base import utcnow
from outbox_service.core.database.exceptions import RepositoryError
from outbox_service.core.events.registry import EventRegistry
from outbox_service.core.settings import get_outbox_settings
from outbox_service.infra.outbox.entry import OutboxMessageType
from outbox_service.infra.outbox.exceptions import OutboxPersistenceError, OutboxPublishError
from outbox_service.infra.outbox.metrics import NullOutboxMetrics, PrometheusOutboxMetrics
from outbox_service.infra.outbox.repository import OutboxRepository

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from faststream.rabbit import RabbitBroker
    from sqlalchemy.ext.asyncio import AsyncSession

    from outbox_service.core.settings import OutboxSettings
    from outbox_service.infra.outbox.entry import OutboxEntry
    from outbox_service.infra.outbox.ports import MessagePublisher, OutboxMetrics

    SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

logger = logging.getLogger(__name__)

# Global processor instance
_processor: OutboxProcessor | None = None

# Substrings checked in order against the lower-cased error text
_ERROR_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("connection", ("connection", "connect", "refused", "unreachable")),
    ("timeout", ("timeout", "timed out")),
    ("queue", ("queue", "exchange", "not_found", "no route")),
    ("serialization", ("json", "serializ", "deserializ", "decode")),
    ("amqp", ("amqp", "channel")),
)
_AMQP_MODULES = ("aio_pika", "aiormq", "pamqp", "faststream")

PublishOutcome = Literal["published", "failed", "skipped"]


def classify_error(exc: BaseException) -> str:
    """Bucket a publish failure into a low-cardinality ``error_type`` label.

    Returns one of ``connection``, ``timeout``, ``queue``, ``serialization``,
    ``amqp``, ``database`` or ``unknown``.
    """
    if isinstance(exc, TimeoutError):
        return "timeout"
    if isinstance(exc, ConnectionError):
        return "connection"
    if isinstance(exc, (SQLAlchemyError, RepositoryError)):
        return "database"
    if isinstance(exc, (OutboxPublishError, ValueError)):
        return "serialization"

    text = f"{type(exc).__name__} {exc}".lower()
    for error_type, keywords in _ERROR_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return error_type

    if type(exc).__module__.split(".", 1)[0] in _AMQP_MODULES:
        return "amqp"
    return "unknown"


@dataclass(slots=True)
class BatchResult:
    """Outcome of one poll cycle (or the sum of several)."""

    fetched: int = 0
    published: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    errors: dict[str, str] = field(default_factory=dict)

    def merge(self, other: BatchResult) -> BatchResult:
        return BatchResult(
            fetched=self.fetched + other.fetched,
            published=self.published + other.published,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
            duration=self.duration + other.duration,
            errors={**self.errors, **other.errors},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetched": self.fetched,
            "published": self.published,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration_seconds": round(self.duration, 3),
            "errors": dict(self.errors),
        }


class OutboxProcessor:
    """Background processor for publishing outbox entries.

    Polls the outbox table and publishes entries through ``publisher``.
    Handles failures with exponential backoff retries.

    Attributes:
        batch_size: Number of entries to process per batch
        poll_interval: Seconds between polling cycles when idle
        max_retries: Maximum retry attempts before an entry is left alone
        message_type: Restrict polling to one message type (None for all)
        dry_run: Fetch and report due entries without publishing them
    """

    def __init__(
        self,
        publisher: MessagePublisher,
        *,
        session_factory: SessionFactory | None = None,
        metrics: OutboxMetrics | None = None,
        batch_size: int = 100,
        poll_interval: float = 5.0,
        max_retries: int = 5,
        message_type: OutboxMessageType | None = None,
        dry_run: bool = False,
        shutdown_timeout: float = 30.0,
    ) -> None:
        """Initialize the outbox processor.

        Args:
            publisher: Routing publisher for EVENT and TASK entries
            session_factory: Returns an async context manager yielding a
                session (defaults to ``get_async_session``)
            metrics: Metrics sink (no-op when omitted)
            batch_size: Entries to fetch per batch
            poll_interval: Seconds between polls when idle
            max_retries: Max retries before an entry is treated as dead
            message_type: Only publish entries of this type
            dry_run: Report due entries without publishing
            shutdown_timeout: Seconds ``stop()`` waits for the current batch
        """
        if session_factory is None:
            from outbox_service.infra.database.session import get_async_session

            session_factory = get_async_session

        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.message_type = message_type
        self.dry_run = dry_run
        self.shutdown_timeout = shutdown_timeout

        self._publisher = publisher
        self._session_factory = session_factory
        self._metrics: OutboxMetrics = metrics or NullOutboxMetrics()
        self._running = False
        self._task: asyncio.Task[BatchResult] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background processor."""
        if self._running:
            logger.warning("Outbox processor already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Outbox processor started",
            extra={
                "batch_size": self.batch_size,
                "poll_interval": self.poll_interval,
                "max_retries": self.max_retries,
                "message_type": self.message_type.value if self.message_type else "all",
                "dry_run": self.dry_run,
            },
        )

    async def stop(self) -> None:
        """Stop the background processor gracefully.

        Waits for the current batch to complete before stopping.
        """
        if not self._running and self._task is None:
            return

        self._running = False

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=self.shutdown_timeout)
            except TimeoutError:
                logger.warning("Outbox processor shutdown timed out, cancelling")
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
            self._task = None

        logger.info("Outbox processor stopped")

    async def run(self, *, run_once: bool = False) -> BatchResult:
        """Process batches in the foreground until stopped.

        Args:
            run_once: Process a single batch and return

        Returns:
            Totals over every batch processed.
        """
        if run_once:
            return await self.process_batch()
        self._running = True
        try:
            return await self._run_loop()
        finally:
            self._running = False

    async def _run_loop(self) -> BatchResult:
        """Main processing loop."""
        totals = BatchResult()
        while self._running:
            try:
                result = await self.process_batch()
                totals = totals.merge(result)

                if result.fetched == 0:
                    await asyncio.sleep(self.poll_interval)
                else:
                    # More entries might be due, yield and poll again
                    await asyncio.sleep(0)

            except asyncio.CancelledError:
                logger.info("Outbox processor loop cancelled")
                raise
            except Exception:
                logger.exception("Error in outbox processor loop")
                await asyncio.sleep(self.poll_interval * 2)
        return totals

    async def process_batch(self) -> BatchResult:
        """Run one poll cycle.

        Returns:
            Counts for the entries fetched in this cycle.
        """
        started = time.perf_counter()
        result = BatchResult()

        async with self._session_factory() as session:
            repository = OutboxRepository(session)
            entries = await self._fetch_due(repository)
            result.fetched = len(entries)

            if entries:
                logger.debug("Processing outbox batch", extra={"batch_size": len(entries)})

            for entry in entries:
                now = utcnow()
                if not entry.is_eligible_for_retry(now) or entry.retry_count >= self.max_retries:
                    result.skipped += 1
                    continue

                if self.dry_run:
                    result.skipped += 1
                    logger.info(
                        "Dry run: outbox entry would be published",
                        extra={
                            "entry_id": entry.id,
                            "message_type": entry.message_type.value,
                            "event_type": entry.event_type,
                            "sequence_number": entry.sequence_number,
                        },
                    )
                    continue

                outcome = await self._publish_entry(repository, entry, result)
                if outcome == "published":
                    result.published += 1
                elif outcome == "failed":
                    result.failed += 1
                else:
                    result.skipped += 1

            if not self.dry_run:
                await self._refresh_pending(repository)

        result.duration = time.perf_counter() - started
        if result.fetched:
            logger.info("Outbox batch processed", extra=result.to_dict())
        return result

    async def _fetch_due(self, repository: OutboxRepository) -> list[OutboxEntry]:
        if self.message_type is None:
            entries = await repository.find_unpublished(self.batch_size, max_retry_count=self.max_retries)
        else:
            entries = await repository.find_unpublished_by_type(
                self.message_type,
                self.batch_size,
                max_retry_count=self.max_retries,
            )
        if self.dry_run:
            # Release the row locks taken by the fetch
            await repository.rollback()
        return entries

    async def _publish_entry(
        self,
        repository: OutboxRepository,
        entry: OutboxEntry,
        result: BatchResult,
    ) -> PublishOutcome:
        """Publish one entry and persist the outcome.

        Returns:
            ``"skipped"`` when another publisher settled the entry first.
        """
        started = time.perf_counter()
        try:
            await self._publisher.publish(entry)
        except Exception as exc:
            error_type = classify_error(exc)
            next_retry_at = entry.next_retry_time()
            try:
                await repository.mark_as_failed(entry.id, str(exc), next_retry_at)
            except OutboxPersistenceError as persist_exc:
                if persist_exc.reason is not OutboxPersistenceError.Reason.NOT_FOUND:
                    raise
                await repository.rollback()
                logger.info(
                    "Outbox entry already settled by another publisher",
                    extra={"entry_id": entry.id, "error": str(exc)},
                )
                return "skipped"
            await repository.commit()

            self._metrics.record_publish_failure(entry.message_type, error_type)
            self._metrics.record_retry_attempt(entry.message_type, entry.retry_count + 1)
            result.errors[entry.id] = str(exc)
            logger.warning(
                "Failed to publish outbox entry, scheduled for retry",
                extra={
                    "entry_id": entry.id,
                    "message_type": entry.message_type.value,
                    "event_type": entry.event_type,
                    "error": str(exc),
                    "error_type": error_type,
                    "retry_count": entry.retry_count + 1,
                    "next_retry_at": next_retry_at.isoformat(),
                },
            )
            return "failed"

        await repository.mark_as_published([entry.id])
        await repository.commit()
        self._metrics.record_message_published(entry.message_type, time.perf_counter() - started)
        return "published"

    async def _refresh_pending(self, repository: OutboxRepository) -> None:
        counts = await repository.get_metrics()
        self._metrics.set_pending_count(OutboxMessageType.EVENT, counts["total_events"])
        self._metrics.set_pending_count(OutboxMessageType.TASK, counts["total_tasks"])


def create_outbox_processor(
    broker: RabbitBroker,
    *,
    registry: EventRegistry | None = None,
    settings: OutboxSettings | None = None,
    **overrides: Any,
) -> OutboxProcessor:
    """Wire an ``OutboxProcessor`` to a RabbitMQ broker.

    Event classes come from ``registry`` plus every module named in
    ``OutboxSettings.event_modules``. Keyword overrides replace the settings
    values passed to the processor (``batch_size``, ``dry_run``, ...).
    """
    from outbox_service.infra.messaging.transports import RabbitCommandProducer, RabbitEventTransport
    from outbox_service.infra.outbox.publishers import EventPublisher, OutboxPublisher, TaskPublisher

    settings = settings or get_outbox_settings()
    registry = registry if registry is not None else EventRegistry()
    for module in settings.event_modules:
        registry.register_module(module)

    publisher = OutboxPublisher(
        EventPublisher(RabbitEventTransport(broker), registry),
        TaskPublisher(RabbitCommandProducer(broker), route=settings.task_route),
    )
    options: dict[str, Any] = {
        "metrics": PrometheusOutboxMetrics(),
        "batch_size": settings.batch_size,
        "poll_interval": settings.poll_interval,
        "max_retries": settings.max_retries,
        "shutdown_timeout": settings.shutdown_timeout,
    }
    options.update(overrides)
    return OutboxProcessor(publisher, **options)


async def start_outbox_processor(broker: RabbitBroker | None, **overrides: Any) -> None:
    """Start the global outbox processor.

    Args:
        broker: Connected RabbitMQ broker (the processor is skipped when None)
        **overrides: Passed to ``create_outbox_processor``
    """
    global _processor

    if broker is None:
        logger.info("RabbitMQ not configured, skipping outbox processor")
        return
    if not get_outbox_settings().enabled:
        logger.info("Outbox disabled, skipping outbox processor")
        return

    _processor = create_outbox_processor(broker, **overrides)
    await _processor.start()


async def stop_outbox_processor() -> None:
    """Stop the global outbox processor."""
    global _processor

    if _processor is not None:
        await _processor.stop()
        _processor = None


def get_outbox_processor() -> OutboxProcessor | None:
    """Get the global outbox processor instance."""
    return _processor


__all__ = [
    "BatchResult",
    "OutboxProcessor",
    "classify_error",
    "create_outbox_processor",
    "get_outbox_processor",
    "start_outbox_processor",
    "stop_outbox_processor",
]
