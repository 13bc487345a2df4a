"""Logging setup for the outbox service."""

from __future__ import annotations

from outbox_service.infra.logging.config import configure_logging, setup_logging
from outbox_service.infra.logging.formatters import JSONFormatter

__all__ = ["JSONFormatter", "configure_logging", "setup_logging"]
