"""Tests for database session helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from outbox_service.infra.database import session as session_module


@pytest.fixture
def temp_engine(monkeypatch):
    """Point the module at a throwaway in-memory engine."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    monkeypatch.setattr(session_module, "_engine", engine)
    monkeypatch.setattr(session_module, "_session_factory", None)
    return engine


@pytest.mark.asyncio
async def test_init_database_creates_outbox_tables(temp_engine):
    """init_database(create_tables=True) should create the outbox tables."""
    await session_module.init_database(create_tables=True)

    async with temp_engine.connect() as conn:
        result = await conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        )
        assert {"outbox", "outbox_sequence"} <= set(result.scalars().all())

    await session_module.close_database()


@pytest.mark.asyncio
async def test_init_database_without_create_only_checks_connection(temp_engine):
    """Without create_tables the schema is left alone."""
    await session_module.init_database()

    async with temp_engine.connect() as conn:
        result = await conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
        assert result.scalars().all() == []

    await session_module.close_database()


@pytest.mark.asyncio
async def test_get_async_session_uses_engine(temp_engine):
    """Sessions are bound to the module engine."""
    async with session_module.get_async_session() as session:
        assert (await session.execute(text("SELECT 1"))).scalar_one() == 1
        assert session.bind is temp_engine

    await session_module.close_database()


@pytest.mark.asyncio
async def test_close_database_resets_state(temp_engine):
    """close_database should drop the cached engine and factory."""
    session_module.get_session_factory()

    await session_module.close_database()

    assert session_module._engine is None
    assert session_module._session_factory is None


@pytest.mark.asyncio
async def test_close_database_without_engine_is_noop(monkeypatch):
    monkeypatch.setattr(session_module, "_engine", None)

    await session_module.close_database()


def test_get_engine_requires_enabled_database(monkeypatch):
    """A disabled database cannot produce an engine."""
    monkeypatch.setattr(session_module, "_engine", None)
    monkeypatch.setenv("DB_ENABLED", "false")

    with pytest.raises(ValueError, match="Database is not enabled"):
        session_module.get_engine()
