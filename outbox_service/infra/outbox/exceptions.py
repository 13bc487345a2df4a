"""Outbox error taxonomy.

- ``OutboxPersistenceError``: the outbox table could not be written. Always
  fatal to the caller's transaction.
- ``ReplyNotSupportedError``: a caller asked for a synchronous reply while
  commands are deferred through the outbox.
- ``OutboxPublishError``: a stored entry could not be turned into a
  transport message. The poller records it with ``mark_as_failed``.
"""

from __future__ import annotations

from enum import Enum

from outbox_service.core.database.exceptions import RepositoryError


class OutboxPersistenceError(RepositoryError):
    """Outbox row could not be saved or updated.

    Attributes:
        reason: Which operation failed
        entry_id: Affected entry id, when a single entry was involved
    """

    class Reason(str, Enum):
        SAVE_FAILED = "save_failed"
        BATCH_SAVE_FAILED = "batch_save_failed"
        UPDATE_FAILED = "update_failed"
        NOT_FOUND = "not_found"

    def __init__(
        self,
        message: str,
        *,
        reason: OutboxPersistenceError.Reason,
        entry_id: str | None = None,
        count: int | None = None,
    ) -> None:
        details: dict[str, object] = {"reason": reason.value}
        if entry_id is not None:
            details["entry_id"] = entry_id
        if count is not None:
            details["count"] = count
        super().__init__(message, details=details)
        self.reason = reason
        self.entry_id = entry_id
        self.count = count

    @classmethod
    def save_failed(cls, entry_id: str, cause: BaseException) -> OutboxPersistenceError:
        return cls(
            f"Failed to save outbox entry {entry_id}: {cause}",
            reason=cls.Reason.SAVE_FAILED,
            entry_id=entry_id,
        )

    @classmethod
    def batch_save_failed(cls, count: int, cause: BaseException) -> OutboxPersistenceError:
        return cls(
            f"Failed to save batch of {count} outbox entries: {cause}",
            reason=cls.Reason.BATCH_SAVE_FAILED,
            count=count,
        )

    @classmethod
    def update_failed(cls, entry_id: str, cause: BaseException) -> OutboxPersistenceError:
        return cls(
            f"Failed to update outbox entry {entry_id}: {cause}",
            reason=cls.Reason.UPDATE_FAILED,
            entry_id=entry_id,
        )

    @classmethod
    def not_found(cls, entry_id: str) -> OutboxPersistenceError:
        """Entry missing or no longer pending when a live entry was expected."""
        return cls(
            f"Outbox entry not found: {entry_id}",
            reason=cls.Reason.NOT_FOUND,
            entry_id=entry_id,
        )


class ReplyNotSupportedError(ValueError):
    """Reply-expecting command sent while the outbox is enabled."""

    def __init__(self) -> None:
        super().__init__(
            "Reply-based commands are not supported with outbox pattern. "
            "Use async messaging with correlation IDs instead."
        )


class OutboxPublishError(Exception):
    """Stored entry could not be published.

    Attributes:
        message_id: Outbox entry id, when known
        event_type: Event or command type, when known
    """

    def __init__(
        self,
        message: str,
        *,
        message_id: str | None = None,
        event_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.message_id = message_id
        self.event_type = event_type

    @classmethod
    def event_class_not_found(cls, event_type: str) -> OutboxPublishError:
        return cls(
            f"Cannot resolve event class for type: {event_type}. "
            "Register it via register_event_class().",
            event_type=event_type,
        )

    @classmethod
    def invalid_task_format(cls, message_id: str, details: str) -> OutboxPublishError:
        return cls(
            f"Invalid task message format for outbox entry {message_id}: {details}",
            message_id=message_id,
        )

    @classmethod
    def unsupported_message_type(cls, message_type: str) -> OutboxPublishError:
        return cls(f"No publisher supports outbox message type: {message_type}")

    @classmethod
    def deserialization_failed(cls, event_type: str, reason: str) -> OutboxPublishError:
        return cls(
            f"Failed to deserialize event {event_type}: {reason}",
            event_type=event_type,
        )


__all__ = [
    "OutboxPersistenceError",
    "OutboxPublishError",
    "ReplyNotSupportedError",
]
