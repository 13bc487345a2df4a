"""Retention cleanup for the outbox table.

Published entries are only kept for inspection; ``OutboxCleaner`` deletes
them once they are older than the retention window, and can also purge dead
letters. Deletes run in bounded batches, each committed on its own, so a
large backlog never holds locks on the whole table.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from outbox_service.core.database.base import utcnow
from outbox_service.core.settings import get_outbox_settings
from outbox_service.infra.outbox.metrics import NullOutboxMetrics
from outbox_service.infra.outbox.repository import OutboxRepository

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from outbox_service.core.settings import OutboxSettings
    from outbox_service.infra.outbox.ports import OutboxMetrics
    from outbox_service.infra.outbox.processor import SessionFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CleanupResult:
    """What a cleanup run deleted (or would delete, for a dry run)."""

    cutoff: datetime
    published_deleted: int = 0
    failed_deleted: int = 0
    dry_run: bool = False
    duration: float = 0.0

    @property
    def total_deleted(self) -> int:
        return self.published_deleted + self.failed_deleted

    def to_dict(self) -> dict[str, Any]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "published_deleted": self.published_deleted,
            "failed_deleted": self.failed_deleted,
            "total_deleted": self.total_deleted,
            "dry_run": self.dry_run,
            "duration_seconds": round(self.duration, 3),
        }


class OutboxCleaner:
    """Deletes old published entries and, optionally, dead letters.

    Args:
        session_factory: Returns an async context manager yielding a session
            (defaults to ``get_async_session``)
        metrics: Metrics sink (no-op when omitted)
        settings: Outbox settings supplying the defaults for :meth:`run`
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory | None = None,
        metrics: OutboxMetrics | None = None,
        settings: OutboxSettings | None = None,
    ) -> None:
        if session_factory is None:
            from outbox_service.infra.database.session import get_async_session

            session_factory = get_async_session

        self._session_factory = session_factory
        self._metrics: OutboxMetrics = metrics or NullOutboxMetrics()
        self._settings = settings or get_outbox_settings()

    async def run(
        self,
        *,
        retention_days: int | None = None,
        batch_size: int | None = None,
        include_failed: bool = False,
        max_retries: int | None = None,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> CleanupResult:
        """Run one cleanup pass.

        Args:
            retention_days: Keep entries published within this many days
            batch_size: Maximum rows per delete statement
            include_failed: Also purge dead letters, entries the poller gave up on
                (``retry_count >= max_retries``)
            max_retries: The poller's retry limit, used as the dead-letter threshold
            dry_run: Only count what would be deleted
            now: Reference time for the retention cutoff

        Returns:
            Counts of deleted (or matching, for a dry run) entries.
        """
        retention_days = self._settings.retention_days if retention_days is None else retention_days
        batch_size = batch_size or self._settings.cleanup_batch_size
        max_retries = self._settings.max_retries if max_retries is None else max_retries
        # The poller stops at retry_count >= max_retries; the repository counts retry_count > n
        exceeded = max_retries - 1
        cutoff = (now or utcnow()) - timedelta(days=retention_days)

        started = time.perf_counter()
        async with self._session_factory() as session:
            repository = OutboxRepository(session)
            if dry_run:
                published = await repository.count_published_before(cutoff)
                failed = await repository.count_failed_exceeding_retries(exceeded) if include_failed else 0
            else:
                published = await self._drain(
                    repository,
                    lambda: repository.delete_published_before(cutoff, batch_size),
                    batch_size,
                )
                failed = 0
                if include_failed:
                    failed = await self._drain(
                        repository,
                        lambda: repository.delete_failed_exceeding_retries(exceeded, batch_size),
                        batch_size,
                    )

        result = CleanupResult(
            cutoff=cutoff,
            published_deleted=published,
            failed_deleted=failed,
            dry_run=dry_run,
            duration=time.perf_counter() - started,
        )
        if not dry_run:
            self._metrics.record_cleanup(result.total_deleted, result.duration)
        logger.info("Outbox cleanup finished", extra=result.to_dict())
        return result

    @staticmethod
    async def _drain(
        repository: OutboxRepository,
        delete_batch: Callable[[], Awaitable[int]],
        batch_size: int,
    ) -> int:
        """Repeat ``delete_batch`` until it comes back short."""
        total = 0
        while True:
            deleted = await delete_batch()
            await repository.commit()
            total += deleted
            if deleted < batch_size:
                return total


__all__ = ["CleanupResult", "OutboxCleaner"]
