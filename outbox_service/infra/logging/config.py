"""Logging configuration setup.

Built on ``logging.config.dictConfig``. All handlers sit on the root logger;
module loggers obtained with ``logging.getLogger(__name__)`` propagate up.
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from outbox_service.core.settings.logs import LoggingSettings

logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_TEXT_FORMAT_WITH_PROCESS = "%(asctime)s %(levelname)s %(name)s [%(processName)s:%(process)d] %(message)s"

# Third-party loggers that are too chatty at DEBUG
_QUIET_LOGGERS = ("aio_pika", "aiormq", "sqlalchemy.engine", "taskiq")


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    if log_settings is None:
        from outbox_service.core.settings import get_logging_settings

        log_settings = get_logging_settings()

    configure_logging(**{**log_settings.to_logging_kwargs(), **configure_kwargs})
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    *,
    service_name: str = "outbox-service",
    json_logs: bool = True,
    console_enabled: bool = True,
    file_path: str | Path | None = None,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    include_process_info: bool = False,
    capture_warnings: bool = True,
) -> None:
    """Configure the root logger with dictConfig.

    Args:
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        service_name: Added to every JSON record as ``service``.
        json_logs: Emit JSON Lines instead of plain text.
        console_enabled: Log to stderr.
        file_path: Rotating log file; None disables file logging.
        file_max_bytes: Maximum log file size before rotation.
        file_backup_count: Number of rotated log files to keep.
        include_process_info: Include process ID and name in records.
        capture_warnings: Forward Python warnings to logging.
    """
    formatter = "json" if json_logs else "text"
    handlers: dict[str, Any] = {}

    if console_enabled:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "stream": "ext://sys.stderr",
        }
    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": formatter,
            "filename": str(path),
            "maxBytes": file_max_bytes,
            "backupCount": file_backup_count,
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": "outbox_service.infra.logging.formatters.JSONFormatter",
                    "static": {"service": service_name},
                    "include_process_info": include_process_info,
                },
                "text": {
                    "format": _TEXT_FORMAT_WITH_PROCESS if include_process_info else _TEXT_FORMAT,
                },
            },
            "handlers": handlers,
            "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            "root": {"level": log_level.upper(), "handlers": list(handlers)},
        }
    )
    logging.captureWarnings(capture_warnings)
    logger.debug(
        "Logging configured",
        extra={"log_level": log_level.upper(), "json_logs": json_logs, "handlers": list(handlers)},
    )


__all__ = ["configure_logging", "setup_logging"]
