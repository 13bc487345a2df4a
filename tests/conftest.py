"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings defaults so no external infrastructure is needed
    - Database Fixtures: in-memory SQLite engine, sessions and the repository
    - Outbox Fixtures: entry factory and recording metrics sink
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from outbox_service.infra.outbox.entry import OutboxEntry
    from outbox_service.infra.outbox.repository import OutboxRepository

# Ensure tests run without external infrastructure
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("AMQP_URI", "")
os.environ.setdefault("OUTBOX_ENABLED", "true")
os.environ.setdefault("LOG_JSON_LOGS", "false")


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Reload settings for every test so monkeypatched env vars apply."""
    from outbox_service.core.settings import clear_all_caches

    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Async engine on a single shared in-memory SQLite connection.

    StaticPool keeps every session on the same connection, so rows written by
    one session are visible to the next.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Session with the outbox tables created; tables are dropped afterwards."""
    from outbox_service.core.database.base import Base
    from outbox_service.infra.outbox import models  # noqa: F401

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        try:
            yield session
        finally:
            await session.rollback()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_engine: AsyncEngine, db_session: AsyncSession) -> Callable[[], Any]:
    """Stand-in for ``get_async_session`` bound to the test engine.

    Depends on ``db_session`` so the tables exist before it is used.
    """
    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def factory() -> AsyncIterator[AsyncSession]:
        async with maker() as session:
            yield session

    return factory


@pytest.fixture
def outbox_repository(db_session: AsyncSession) -> OutboxRepository:
    from outbox_service.infra.outbox.repository import OutboxRepository

    return OutboxRepository(db_session)


# ============================================================================
# Outbox Fixtures
# ============================================================================


@pytest.fixture
def make_event_entry() -> Callable[..., OutboxEntry]:
    """Factory for pending EVENT entries.

    Example:
        entry = make_event_entry(event_type="article.published", retry_count=2)
    """
    from outbox_service.infra.outbox.entry import OutboxEntry

    def _make(
        event_type: str = "article.created",
        aggregate_id: str = "0b7f4e4c-6f5a-4c55-9a51-7d1d0c1d2e3f",
        payload: str = '{"payload": {"class": "article.created", "payload": {}}}',
        **updates: Any,
    ) -> OutboxEntry:
        entry = OutboxEntry.create_for_event(
            aggregate_type="Article",
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            topic="events.article",
            routing_key="event.article_created",
        )
        return entry.model_copy(update=updates) if updates else entry

    return _make


@pytest.fixture
def make_task_entry() -> Callable[..., OutboxEntry]:
    """Factory for pending TASK entries."""
    from outbox_service.infra.outbox.entry import OutboxEntry

    def _make(
        command_type: str = "article.reindex",
        payload: str = '{"type": "article.reindex", "args": ["p-1"]}',
        **updates: Any,
    ) -> OutboxEntry:
        entry = OutboxEntry.create_for_task(
            aggregate_type="Article",
            aggregate_id="0b7f4e4c-6f5a-4c55-9a51-7d1d0c1d2e3f",
            command_type=command_type,
            payload=payload,
            topic="job_command_bus",
            routing_key="job_command_bus",
        )
        return entry.model_copy(update=updates) if updates else entry

    return _make


@pytest.fixture
def mock_metrics() -> MagicMock:
    """Metrics sink that records calls."""
    from outbox_service.infra.outbox.ports import OutboxMetrics

    return MagicMock(spec=OutboxMetrics)
