"""SQLAlchemy integration: declarative base, mixins and the session unit of work."""

from transactional_events.core.database.base import (
    NAMING_CONVENTION,
    Base,
    IntegerPKMixin,
    TimestampMixin,
)
from transactional_events.core.database.session import SessionUnitOfWork

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "IntegerPKMixin",
    "SessionUnitOfWork",
    "TimestampMixin",
]
