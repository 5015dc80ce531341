"""Pre-hook result type, entity snapshots and the built-in timestamp hook.

A pre-hook is any callable ``hook(entity, operation) -> HookResult | None``.
It runs before persistence, may mutate only the entity it is given, and
reports validation problems through its return value instead of raising:

    def require_email(entity: User, operation: LifecycleOperation) -> HookResult:
        if not entity.email:
            return HookResult.fail("email is required")
        return HookResult.ok()

Returning ``None`` is the same as ``HookResult.ok()``.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import InstanceState

from transactional_events.core.events.transaction import Clock, utc_now

_TICK = timedelta(microseconds=1)


class LifecycleOperation(StrEnum):
    """Entity operation wrapped by the lifecycle dispatcher."""

    CREATE = "create"
    UPDATE = "update"
    REMOVE = "remove"

    @property
    def past_tense(self) -> str:
        """Suffix used in event type ids ("user.created")."""
        return {"create": "created", "update": "updated", "remove": "removed"}[self.value]


@dataclasses.dataclass(frozen=True)
class HookResult:
    """Outcome of a pre-hook.

    Attributes:
        passed: False stops the operation before persistence
        errors: Validation messages explaining a failure
    """

    passed: bool = True
    errors: tuple[str, ...] = ()

    @classmethod
    def ok(cls) -> HookResult:
        return cls()

    @classmethod
    def fail(cls, *errors: str) -> HookResult:
        return cls(passed=False, errors=errors)


PreHook = Callable[[Any, LifecycleOperation], HookResult | None]


def entity_type_name(entity: Any) -> str:
    """Event type prefix for an entity or entity class.

    Uses the ``__event_name__`` class attribute when defined, otherwise the
    lowercased class name.
    """
    cls = entity if isinstance(entity, type) else type(entity)
    return getattr(cls, "__event_name__", None) or cls.__name__.lower()


def _mapped_state(entity: Any) -> InstanceState[Any] | None:
    state = sa_inspect(entity, raiseerr=False)
    return state if isinstance(state, InstanceState) else None


def snapshot(entity: Any) -> dict[str, Any]:
    """Shallow field/value copy of an entity.

    Handles SQLAlchemy mapped instances (column attributes), pydantic models,
    dataclasses and plain objects (public instance attributes).
    """
    state = _mapped_state(entity)
    if state is not None:
        return {attr.key: getattr(entity, attr.key) for attr in state.mapper.column_attrs}
    if isinstance(entity, BaseModel):
        return entity.model_dump()
    if dataclasses.is_dataclass(entity):
        return {f.name: getattr(entity, f.name) for f in dataclasses.fields(entity)}
    return {k: v for k, v in vars(entity).items() if not k.startswith("_")}


def previous_snapshot(entity: Any) -> dict[str, Any]:
    """Snapshot of an entity as it was before pending modifications.

    For SQLAlchemy instances the old value of every modified column is taken
    from the attribute history; other entities have no history and are
    snapshotted as they are.
    """
    state = _mapped_state(entity)
    if state is None:
        return snapshot(entity)
    result: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        result[attr.key] = history.deleted[0] if history.deleted else getattr(entity, attr.key)
    return result


def _as_aware(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


class TimestampStamper:
    """Pre-hook maintaining ``created_at`` and ``updated_at``.

    On create both are set to the same instant. On update only
    ``updated_at`` moves, and always strictly forward: when the clock has not
    advanced past the stored value it is bumped by one microsecond.
    Entities without these attributes are left alone.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def __call__(self, entity: Any, operation: LifecycleOperation) -> HookResult:
        if operation is LifecycleOperation.CREATE:
            if hasattr(entity, "created_at"):
                now = self._clock()
                entity.created_at = now
                entity.updated_at = now
        elif operation is LifecycleOperation.UPDATE and hasattr(entity, "updated_at"):
            now = self._clock()
            previous = entity.updated_at
            if previous is not None and now <= _as_aware(previous):
                now = _as_aware(previous) + _TICK
            entity.updated_at = now
        return HookResult.ok()


stamp_timestamps = TimestampStamper()


__all__ = [
    "HookResult",
    "LifecycleOperation",
    "PreHook",
    "TimestampStamper",
    "entity_type_name",
    "previous_snapshot",
    "snapshot",
    "stamp_timestamps",
]
