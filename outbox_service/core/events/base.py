"""Domain event base class.

Domain events are immutable records of something that happened to an
aggregate. They travel through the outbox inside a ``DomainMessage`` envelope
and are rebuilt from the registry on the publishing side, so every field must
survive ``model_dump(mode="json")`` followed by ``model_validate``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from uuid_utils import uuid7

from outbox_service.core.settings import get_app_settings


def _generate_event_id() -> str:
    return str(uuid7())


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _service_name() -> str:
    return get_app_settings().service_name


class DomainEvent(BaseModel):
    """Base class for all domain events.

    Subclasses set ``event_type`` (dotted, first segment is the domain and
    becomes the topic, e.g. ``"article.created"`` -> ``events.article``) and
    optionally bump ``event_version`` when the payload schema changes.

    Example:
        class ArticleCreated(DomainEvent):
            event_type: ClassVar[str] = "article.created"

            article_id: str
            title: str
    """

    event_type: ClassVar[str] = "domain.event"
    event_version: ClassVar[int] = 1

    event_id: str = Field(default_factory=_generate_event_id, description="UUID v7, time-ordered")
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: str | None = None
    causation_id: str | None = Field(default=None, description="event_id of the event that caused this one")
    service: str = Field(default_factory=_service_name)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    @classmethod
    def get_event_type(cls) -> str:
        return cls.event_type

    @classmethod
    def get_event_version(cls) -> int:
        return cls.event_version

    @classmethod
    def get_qualified_type(cls) -> str:
        """Event type with version, e.g. ``"article.created:v1"``."""
        return f"{cls.event_type}:v{cls.event_version}"

    def with_correlation(self, correlation_id: str) -> DomainEvent:
        return self.model_copy(update={"correlation_id": correlation_id})

    def with_causation(self, causing_event: DomainEvent) -> DomainEvent:
        """Copy of this event caused by ``causing_event``.

        The correlation id is inherited when this event has none.
        """
        updates: dict[str, Any] = {"causation_id": causing_event.event_id}
        if self.correlation_id is None and causing_event.correlation_id:
            updates["correlation_id"] = causing_event.correlation_id
        return self.model_copy(update=updates)

    def headers(self) -> dict[str, str]:
        """AMQP headers attached when the poller publishes this event.

        Consumers can route or deduplicate on ``x-event-id`` without decoding
        the body.
        """
        headers = {
            "x-event-type": self.event_type,
            "x-event-version": str(self.event_version),
            "x-event-id": self.event_id,
            "x-service": self.service,
            "x-timestamp": self.timestamp.isoformat(),
        }
        if self.correlation_id:
            headers["x-correlation-id"] = self.correlation_id
        if self.causation_id:
            headers["x-causation-id"] = self.causation_id
        return headers

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(event_id={self.event_id!r}, event_type={self.event_type!r})"


__all__ = ["DomainEvent"]
