"""Modular Pydantic Settings v2 configuration.

One settings model per domain (app/db/rabbit/logging/outbox), each read from
its own environment prefix and cached by a loader:

    from outbox_service.core.settings import get_outbox_settings

    if get_outbox_settings().enabled:
        ...
"""

from __future__ import annotations

from .app import AppSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_outbox_settings,
    get_rabbit_settings,
)
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings

__all__ = [
    "AppSettings",
    "LoggingSettings",
    "OutboxSettings",
    "PostgresSettings",
    "RabbitSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_outbox_settings",
    "get_rabbit_settings",
]
