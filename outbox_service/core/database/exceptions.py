"""Repository exceptions.

Repositories translate SQLAlchemy errors into these so callers can react to
persistence failures without importing the driver's exception hierarchy.
"""
from __future__ import annotations

from typing import Any


class RepositoryError(Exception):
    """Base exception for repository operations.

    Attributes:
        message: Human readable description.
        details: Structured context, rendered as ``key=value`` pairs by ``str()``
            and suitable for ``logger.exception(..., extra=error.details)``.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        rendered = ", ".join(f"{key}={value!r}" for key, value in self.details.items())
        return f"{self.message} ({rendered})"


class NotFoundError(RepositoryError):
    """Lookup by key matched no row."""

    def __init__(self, entity: str, identifiers: dict[str, Any]):
        self.entity = entity
        self.identifiers = identifiers
        keys = ", ".join(f"{key}={value!r}" for key, value in identifiers.items())
        super().__init__(f"{entity} not found with {keys}", details={"entity": entity, **identifiers})


__all__ = [
    "NotFoundError",
    "RepositoryError",
]
