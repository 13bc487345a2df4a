"""Event type registry.

Maps event type strings to event classes so the publishing side can rebuild
events from stored envelopes. Registration is explicit; nothing is discovered
by import side effects.

Usage:
    registry = EventRegistry()

    @registry.register
    class ArticleCreated(DomainEvent):
        event_type: ClassVar[str] = "article.created"
        article_id: str

    event = registry.deserialize("article.created", {"article_id": "..."})
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, TypeVar, overload

if TYPE_CHECKING:
    from types import ModuleType

    from outbox_service.core.events.base import DomainEvent

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="DomainEvent")


class EventRegistry:
    """Registry of domain event classes keyed by type and version.

    Registration is expected during startup; lookups are read-only afterwards.
    """

    def __init__(self) -> None:
        # event_type -> version -> event_class
        self._events: dict[str, dict[int, type[DomainEvent]]] = {}

    @overload
    def register(self, event_class: type[T]) -> type[T]: ...

    @overload
    def register(self, event_class: None = None) -> Any: ...

    def register(self, event_class: type[T] | None = None) -> type[T] | Any:
        """Register an event class.

        Usable as ``registry.register(Cls)``, ``@registry.register`` or
        ``@registry.register()``. Registering the same class twice is a no-op.

        Raises:
            ValueError: If the class keeps the placeholder event type, or a
                different class already owns the same type and version.
        """

        def _register(cls: type[T]) -> type[T]:
            event_type = cls.get_event_type()
            event_version = cls.get_event_version()

            if event_type == "domain.event":
                msg = f"{cls.__name__} must define 'event_type' class variable"
                raise ValueError(msg)

            versions = self._events.setdefault(event_type, {})
            existing = versions.get(event_version)
            if existing is not None and existing is not cls:
                msg = (
                    f"Event type '{event_type}' version {event_version} "
                    f"already registered with {existing.__name__}"
                )
                raise ValueError(msg)

            versions[event_version] = cls
            logger.debug(
                "Registered event type",
                extra={"event_type": event_type, "version": event_version, "class": cls.__name__},
            )
            return cls

        if event_class is None:
            return _register
        return _register(event_class)

    def register_module(self, module: ModuleType | str) -> list[type[DomainEvent]]:
        """Register every concrete event class defined in ``module``.

        Classes imported into the module from elsewhere are ignored, as is
        any class still using the base ``event_type``.

        Args:
            module: Module object or dotted import path

        Returns:
            The classes that were registered.
        """
        from outbox_service.core.events.base import DomainEvent

        if isinstance(module, str):
            module = importlib.import_module(module)

        registered: list[type[DomainEvent]] = []
        for candidate in vars(module).values():
            if (
                isinstance(candidate, type)
                and issubclass(candidate, DomainEvent)
                and candidate.__module__ == module.__name__
                and candidate.get_event_type() != DomainEvent.event_type
            ):
                registered.append(self.register(candidate))
        return registered

    def get(self, event_type: str, version: int | None = None) -> type[DomainEvent] | None:
        """Get an event class by type and optional version (latest if None)."""
        versions = self._events.get(event_type)
        if not versions:
            return None
        if version is not None:
            return versions.get(version)
        return versions[max(versions)]

    def get_or_raise(self, event_type: str, version: int | None = None) -> type[DomainEvent]:
        """Get an event class or raise.

        Raises:
            KeyError: If event type/version not found
        """
        event_class = self.get(event_type, version)
        if event_class is None:
            version_str = f" version {version}" if version is not None else ""
            raise KeyError(f"Unknown event type: '{event_type}'{version_str}")
        return event_class

    def deserialize(
        self,
        event_type: str,
        data: dict[str, Any],
        *,
        version: int | None = None,
        strict_version: bool = False,
    ) -> DomainEvent:
        """Rebuild an event instance from its JSON-mode dump.

        Args:
            event_type: Registered event type string
            data: Field values as produced by ``model_dump(mode="json")``
            version: Version recorded with the payload
            strict_version: Require the exact version instead of falling back
                to the latest registered one

        Raises:
            KeyError: If no matching class is registered
            pydantic.ValidationError: If data doesn't match the schema
        """
        event_class = self.get(event_type, version)
        if event_class is None and version is not None and not strict_version:
            event_class = self.get(event_type)
            if event_class is not None:
                logger.warning(
                    "Using latest version for deserialization",
                    extra={
                        "event_type": event_type,
                        "requested_version": version,
                        "using_version": event_class.get_event_version(),
                    },
                )
        if event_class is None:
            raise KeyError(f"Unknown event type: '{event_type}'")
        return event_class.model_validate(data)

    def list_types(self) -> list[str]:
        """List all registered event types."""
        return sorted(self._events)

    def __contains__(self, event_type: str) -> bool:
        """Check if event type is registered."""
        return event_type in self._events

    def __len__(self) -> int:
        """Number of registered event types."""
        return len(self._events)

    def clear(self) -> None:
        """Clear all registrations (mainly for testing)."""
        self._events.clear()


__all__ = ["EventRegistry"]
