"""Transactional outbox settings.

Controls whether write paths stage outbox rows, how the poller drains the
table, and how long delivered rows are kept around.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hard ceiling shared with OutboxEntry.MAX_RETRY_COUNT
_MAX_RETRY_CEILING = 10


class OutboxSettings(BaseSettings):
    """Outbox feature flag, poller and retention configuration.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_ENABLED=false, OUTBOX_BATCH_SIZE=500
    """

    # ─────────────────────────────────────────────────────
    # Feature flag
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(
        default=True,
        description=(
            "Stage events and task commands in the outbox table. "
            "When False the decorators pass calls straight through."
        ),
    )

    # ─────────────────────────────────────────────────────
    # Poller
    # ─────────────────────────────────────────────────────
    batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum entries fetched per poll cycle.",
    )
    poll_interval: float = Field(
        default=5.0,
        gt=0,
        le=3600.0,
        description="Seconds to sleep when a poll cycle found nothing to publish.",
    )
    max_retries: int = Field(
        default=5,
        ge=1,
        le=_MAX_RETRY_CEILING,
        description="Failed publish attempts before the poller stops retrying an entry.",
    )
    shutdown_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600.0,
        description="Seconds to wait for the current batch on graceful shutdown.",
    )

    # ─────────────────────────────────────────────────────
    # Retention
    # ─────────────────────────────────────────────────────
    retention_days: int = Field(
        default=7,
        ge=0,
        le=3650,
        description="Days to keep published entries before cleanup deletes them.",
    )
    cleanup_batch_size: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Maximum rows deleted per cleanup statement.",
    )

    # ─────────────────────────────────────────────────────
    # Addressing
    # ─────────────────────────────────────────────────────
    topic_prefix: str = Field(
        default="events.",
        description="Prefix for event topics (topic = prefix + domain).",
    )
    routing_key_prefix: str = Field(
        default="event.",
        description="Prefix for event routing keys (key = prefix + snake_case(EventClass)).",
    )
    task_route: str = Field(
        default="job_command_bus",
        min_length=1,
        max_length=255,
        description="Command bus route that task entries are sent to.",
    )

    event_modules: list[str] = Field(
        default_factory=list,
        description=(
            "Dotted module paths whose DomainEvent classes the publishing side "
            "registers (JSON list in the environment)."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _check_prefixes(self) -> OutboxSettings:
        """Reject prefixes that would produce ambiguous names."""
        for name in ("topic_prefix", "routing_key_prefix"):
            value = getattr(self, name)
            if value and not value.endswith("."):
                msg = f"{name} must end with '.' (got {value!r})"
                raise ValueError(msg)
        return self
