"""Repository for the outbox table.

The repository is the only code that touches the ``outbox`` table. It never
opens a transaction on its own around writes: decorators call ``save`` and
``save_all`` inside the transaction that also carries the business change,
and either both commit or neither does. ``begin_transaction``/``commit``/
``rollback`` are exposed so several collaborators can share that one
transaction.

Concurrent pollers are safe without explicit locking: state changes are
guarded by ``published_at IS NULL`` so the loser of a race updates zero rows.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, case, delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from outbox_service.core.database.base import ensure_utc, utcnow
from outbox_service.core.database.exceptions import NotFoundError
from outbox_service.infra.outbox.entry import (
    MAX_RETRY_COUNT,
    OutboxEntry,
    OutboxMessageType,
    truncate_error,
)
from outbox_service.infra.outbox.exceptions import OutboxPersistenceError
from outbox_service.infra.outbox.models import (
    SEQUENCE_NAME,
    OutboxMessage,
    outbox_sequence_counter,
    outbox_sequence_seq,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class OutboxRepository:
    """Persistence port for outbox entries.

    Args:
        session: Session whose transaction the repository participates in.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # ─────────────────────────────────────────────────────
    # Transaction control
    # ─────────────────────────────────────────────────────
    async def begin_transaction(self) -> None:
        """Begin a transaction unless one is already active."""
        if not self._session.in_transaction():
            await self._session.begin()

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    def is_transaction_active(self) -> bool:
        return self._session.in_transaction()

    # ─────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────
    async def save(self, entry: OutboxEntry) -> OutboxEntry:
        """Insert one entry with the next global sequence number.

        Returns:
            The entry as stored, carrying its sequence number.

        Raises:
            OutboxPersistenceError: ``save_failed`` on any database error.
        """
        try:
            stored = await self._insert(entry)
        except SQLAlchemyError as exc:
            raise OutboxPersistenceError.save_failed(entry.id, exc) from exc
        return stored

    async def save_all(self, entries: Sequence[OutboxEntry]) -> list[OutboxEntry]:
        """Insert entries in order, one sequence number per row.

        An empty batch is a no-op.

        Raises:
            OutboxPersistenceError: ``batch_save_failed`` on any database error.
        """
        if not entries:
            return []
        stored: list[OutboxEntry] = []
        try:
            for entry in entries:
                stored.append(await self._insert(entry))
        except SQLAlchemyError as exc:
            raise OutboxPersistenceError.batch_save_failed(len(entries), exc) from exc
        logger.debug(
            "Outbox batch staged",
            extra={
                "count": len(stored),
                "first_sequence_number": stored[0].sequence_number,
                "last_sequence_number": stored[-1].sequence_number,
            },
        )
        return stored

    async def _insert(self, entry: OutboxEntry) -> OutboxEntry:
        stored = entry.with_sequence_number(await self._next_sequence_number())
        row = stored.to_array()
        # Bind datetimes, not their string form
        row.update(
            created_at=stored.created_at,
            published_at=stored.published_at,
            next_retry_at=stored.next_retry_at,
        )
        await self._session.execute(insert(OutboxMessage), [row])
        return stored

    async def _next_sequence_number(self) -> int:
        """Allocate the next value of the global counter.

        PostgreSQL uses ``nextval``; other dialects increment the single-row
        counter table, which holds a row lock until the transaction ends.
        """
        dialect = self._session.get_bind().dialect
        if dialect.supports_sequences:
            result = await self._session.execute(select(outbox_sequence_seq.next_value()))
            return int(result.scalar_one())

        counter = outbox_sequence_counter
        result = await self._session.execute(
            update(counter)
            .where(counter.c.name == SEQUENCE_NAME)
            .values(value=counter.c.value + 1)
            .returning(counter.c.value)
        )
        value = result.scalar_one_or_none()
        if value is None:
            await self._session.execute(insert(counter).values(name=SEQUENCE_NAME, value=1))
            return 1
        return int(value)

    async def mark_as_published(
        self,
        ids: Sequence[str],
        published_at: datetime | None = None,
    ) -> int:
        """Mark entries as published.

        Rows already published are skipped, so repeating the call is a no-op.

        Returns:
            Number of rows changed.
        """
        if not ids:
            return 0
        stmt = (
            update(OutboxMessage)
            .where(
                OutboxMessage.id.in_(list(ids)),
                OutboxMessage.published_at.is_(None),
            )
            .values(
                published_at=ensure_utc(published_at or utcnow()),
                last_error=None,
                next_retry_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise OutboxPersistenceError.update_failed(",".join(ids), exc) from exc
        return result.rowcount

    async def mark_as_failed(
        self,
        entry_id: str,
        error: str,
        next_retry_at: datetime,
    ) -> None:
        """Record a failed delivery attempt and schedule the next one.

        Raises:
            OutboxPersistenceError: ``not_found`` when the entry does not exist
                or is already published; ``update_failed`` on database errors.
        """
        stmt = (
            update(OutboxMessage)
            .where(
                OutboxMessage.id == entry_id,
                OutboxMessage.published_at.is_(None),
            )
            .values(
                retry_count=OutboxMessage.retry_count + 1,
                last_error=truncate_error(error),
                next_retry_at=ensure_utc(next_retry_at),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise OutboxPersistenceError.update_failed(entry_id, exc) from exc
        if result.rowcount == 0:
            raise OutboxPersistenceError.not_found(entry_id)

    # ─────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────
    async def find_unpublished(
        self,
        limit: int = 100,
        *,
        max_retry_count: int = MAX_RETRY_COUNT,
        now: datetime | None = None,
    ) -> list[OutboxEntry]:
        """Entries due for delivery, lowest sequence number first.

        Returns unpublished entries whose ``next_retry_at`` is unset or not in
        the future and that still have retries left. Rows locked by another
        poller are skipped where the database supports ``SKIP LOCKED``.
        """
        return await self._fetch_due(self._due_query(limit, max_retry_count, now))

    async def find_unpublished_by_type(
        self,
        message_type: OutboxMessageType,
        limit: int = 100,
        *,
        max_retry_count: int = MAX_RETRY_COUNT,
        now: datetime | None = None,
    ) -> list[OutboxEntry]:
        """Like :meth:`find_unpublished`, restricted to one message type."""
        stmt = self._due_query(limit, max_retry_count, now).where(
            OutboxMessage.message_type == OutboxMessageType(message_type).value
        )
        return await self._fetch_due(stmt)

    def _due_query(
        self,
        limit: int,
        max_retry_count: int,
        now: datetime | None,
    ) -> Select[tuple[OutboxMessage]]:
        cutoff = ensure_utc(now or utcnow())
        return (
            select(OutboxMessage)
            .where(
                OutboxMessage.published_at.is_(None),
                OutboxMessage.retry_count < max_retry_count,
                OutboxMessage.next_retry_at.is_(None) | (OutboxMessage.next_retry_at <= cutoff),
            )
            .order_by(OutboxMessage.sequence_number.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )

    async def _fetch_due(self, stmt: Select[tuple[OutboxMessage]]) -> list[OutboxEntry]:
        result = await self._session.execute(stmt)
        return [OutboxEntry.from_array(row.to_dict()) for row in result.scalars().all()]

    async def find_by_id(self, entry_id: str) -> OutboxEntry | None:
        stmt = (
            select(OutboxMessage)
            .where(OutboxMessage.id == entry_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return OutboxEntry.from_array(row.to_dict()) if row is not None else None

    async def get_by_id(self, entry_id: str) -> OutboxEntry:
        """Like :meth:`find_by_id` but raises when missing.

        Raises:
            NotFoundError: If no entry has this id.
        """
        entry = await self.find_by_id(entry_id)
        if entry is None:
            raise NotFoundError("OutboxEntry", {"id": entry_id})
        return entry

    # ─────────────────────────────────────────────────────
    # Retention and dead letters
    # ─────────────────────────────────────────────────────
    async def delete_published_older_than(self, older_than: datetime) -> int:
        """Delete every entry published before ``older_than`` in one statement.

        Prefer :meth:`delete_published_before` for scheduled cleanup.
        """
        stmt = delete(OutboxMessage).where(
            OutboxMessage.published_at.is_not(None),
            OutboxMessage.published_at < ensure_utc(older_than),
        )
        result = await self._session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    async def count_published_before(self, before: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(OutboxMessage)
            .where(
                OutboxMessage.published_at.is_not(None),
                OutboxMessage.published_at < ensure_utc(before),
            )
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def delete_published_before(self, before: datetime, limit: int) -> int:
        """Delete at most ``limit`` entries published before ``before``, oldest first."""
        oldest = (
            select(OutboxMessage.id)
            .where(
                OutboxMessage.published_at.is_not(None),
                OutboxMessage.published_at < ensure_utc(before),
            )
            .order_by(OutboxMessage.published_at.asc())
            .limit(limit)
        )
        stmt = delete(OutboxMessage).where(OutboxMessage.id.in_(oldest))
        result = await self._session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    async def count_failed_exceeding_retries(self, max_retries: int) -> int:
        """Count unpublished entries with ``retry_count > max_retries``."""
        stmt = (
            select(func.count())
            .select_from(OutboxMessage)
            .where(
                OutboxMessage.published_at.is_(None),
                OutboxMessage.retry_count > max_retries,
            )
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def delete_failed_exceeding_retries(self, max_retries: int, limit: int) -> int:
        """Delete at most ``limit`` dead letters, oldest first."""
        oldest = (
            select(OutboxMessage.id)
            .where(
                OutboxMessage.published_at.is_(None),
                OutboxMessage.retry_count > max_retries,
            )
            .order_by(OutboxMessage.created_at.asc())
            .limit(limit)
        )
        stmt = delete(OutboxMessage).where(OutboxMessage.id.in_(oldest))
        result = await self._session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    # ─────────────────────────────────────────────────────
    # Observability
    # ─────────────────────────────────────────────────────
    async def get_metrics(self, now: datetime | None = None) -> dict[str, Any]:
        """Aggregate counts for dashboards.

        Returns:
            ``total_pending``, ``total_events`` and ``total_tasks`` (pending
            per type), ``failed_count`` (pending with at least one failure)
            and ``oldest_pending_seconds`` (0 when nothing is pending).
        """
        pending = OutboxMessage.published_at.is_(None)
        counts = (
            await self._session.execute(
                select(
                    func.count(case((pending, 1))).label("total_pending"),
                    func.count(
                        case((and_(pending, OutboxMessage.message_type == OutboxMessageType.EVENT.value), 1))
                    ).label("total_events"),
                    func.count(
                        case((and_(pending, OutboxMessage.message_type == OutboxMessageType.TASK.value), 1))
                    ).label("total_tasks"),
                    func.count(case((and_(pending, OutboxMessage.retry_count > 0), 1))).label("failed_count"),
                )
            )
        ).one()

        oldest = (
            await self._session.execute(select(func.min(OutboxMessage.created_at)).where(pending))
        ).scalar_one_or_none()
        oldest_seconds = 0
        if oldest is not None:
            age = ensure_utc(now or utcnow()) - ensure_utc(oldest)  # type: ignore[operator]
            oldest_seconds = max(0, int(age.total_seconds()))

        return {
            "total_pending": counts.total_pending,
            "total_events": counts.total_events,
            "total_tasks": counts.total_tasks,
            "failed_count": counts.failed_count,
            "oldest_pending_seconds": oldest_seconds,
        }

    async def count_by_status(self) -> dict[str, int]:
        """Counts of ``pending`` (never failed), ``published`` and ``failed`` entries."""
        pending = OutboxMessage.published_at.is_(None)
        row = (
            await self._session.execute(
                select(
                    func.count(case((and_(pending, OutboxMessage.retry_count == 0), 1))).label("pending"),
                    func.count(case((OutboxMessage.published_at.is_not(None), 1))).label("published"),
                    func.count(case((and_(pending, OutboxMessage.retry_count > 0), 1))).label("failed"),
                )
            )
        ).one()
        return {"pending": row.pending, "published": row.published, "failed": row.failed}


__all__ = ["OutboxRepository"]
