"""Database base classes and repository exceptions."""

from outbox_service.core.database.base import NAMING_CONVENTION, Base, ensure_utc, utcnow
from outbox_service.core.database.exceptions import NotFoundError, RepositoryError

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "NotFoundError",
    "RepositoryError",
    "ensure_utc",
    "utcnow",
]
