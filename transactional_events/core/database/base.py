"""SQLAlchemy declarative base and mixins for evented entities.

Timestamps are maintained by the lifecycle dispatcher's timestamp pre-hook,
not by column ``onupdate`` callbacks, so the values are already on the
entity when the change event snapshot is taken.

Examples:
    class User(Base, IntegerPKMixin, TimestampMixin):
        __tablename__ = "users"
        __event_name__ = "user"
        email: Mapped[str] = mapped_column(String(255), unique=True)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, MetaData, event
from sqlalchemy.orm import DeclarativeBase, Mapped, Mapper, declared_attr, mapped_column
from sqlalchemy.sql import func

# Predictable constraint names for schema management
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with constraint naming and automatic table names.

    The automatic table name (lowercased class name) can be overridden by
    setting ``__tablename__`` on the model.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()


def _on_column_set(target: Any, value: Any, oldvalue: Any, initiator: Any) -> None:
    """No-op listener; registered for its ``active_history`` flag."""


@event.listens_for(Base, "mapper_configured", propagate=True)
def _track_previous_values(mapper: Mapper[Any], cls: type[Any]) -> None:
    """Keep the old value in the attribute history whenever a column is set.

    Assigning to an expired attribute (the state after a commit) loads the
    row first, so update change records always see the previous value.
    """
    for prop in mapper.column_attrs:
        event.listen(getattr(cls, prop.key), "set", _on_column_set, active_history=True)


class IntegerPKMixin:
    """Integer auto-increment primary key.

    The id is assigned at flush, which is when the lifecycle dispatcher's
    persistence step runs, so change events always carry it.
    """

    __allow_unmapped__ = True

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing integer primary key",
    )


class TimestampMixin:
    """Creation and modification timestamps.

    Set by the lifecycle timestamp pre-hook: creation stamps both columns
    with the same instant, updates move only ``updated_at`` strictly
    forward. The server default covers rows inserted outside the ORM.
    """

    __allow_unmapped__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp of record creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp of last update",
    )


__all__ = ["NAMING_CONVENTION", "Base", "IntegerPKMixin", "TimestampMixin"]
