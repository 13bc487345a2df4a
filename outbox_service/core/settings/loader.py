"""LRU-cached settings loaders.

Each settings model is validated once and cached for the life of the process.

Testing:
    Clear the cache to force a reload after changing the environment:
    get_outbox_settings.cache_clear()
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings."""
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_rabbit_settings() -> RabbitSettings:
    """Get cached RabbitMQ settings."""
    return RabbitSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_outbox_settings() -> OutboxSettings:
    """Get cached outbox settings.

    Returns:
        Validated and frozen OutboxSettings instance.
    """
    return OutboxSettings()


def clear_all_caches() -> None:
    """Drop every cached settings instance (tests and reload hooks)."""
    for loader in (
        get_app_settings,
        get_db_settings,
        get_rabbit_settings,
        get_logging_settings,
        get_outbox_settings,
    ):
        loader.cache_clear()
