"""Database session management with psycopg3 async driver."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from outbox_service.core.database.base import Base
from outbox_service.core.settings import get_app_settings, get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Return the process-wide async engine, creating it on first use.

    Raises:
        ValueError: If the database is not enabled.
    """
    global _engine

    if _engine is None:
        db_settings = get_db_settings()
        kwargs = db_settings.engine_kwargs()
        kwargs["echo"] = kwargs["echo"] or get_app_settings().debug
        _engine = create_async_engine(db_settings.get_sqlalchemy_url(), **kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to :func:`get_engine`."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Uncommitted work is rolled back when the block exits.

    Yields:
        Database session that is automatically closed.

    Example:
        async with get_async_session() as session:
            repository = OutboxRepository(session)
            entries = await repository.find_unpublished(50)
    """
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database(*, create_tables: bool = False) -> None:
    """Check the database connection, optionally creating missing tables.

    Args:
        create_tables: Run ``Base.metadata.create_all`` (tables that already
            exist are left alone); production schemas come from Alembic.

    Raises:
        SQLAlchemyError: If the database cannot be reached.
    """
    # Import models so they are registered on Base.metadata
    from outbox_service.infra.outbox import models  # noqa: F401

    engine = get_engine()
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("Failed to connect to database", extra={"url": engine.url.render_as_string(), "error": str(e)})
        raise
    logger.info(
        "Database connection established successfully",
        extra={"url": engine.url.render_as_string(), "create_tables": create_tables},
    )


async def close_database() -> None:
    """Dispose of the engine.

    This should be called during application shutdown.
    """
    global _engine, _session_factory

    if _engine is None:
        return
    logger.info("Closing database connection")
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connection closed successfully")


__all__ = [
    "close_database",
    "get_async_session",
    "get_engine",
    "get_session_factory",
    "init_database",
]
