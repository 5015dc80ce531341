"""Entity lifecycle dispatcher: pre-hook, persist, post-hook.

Every wrapped operation goes through three steps:

1. PRE_HOOK: registered pre-hooks run in registration order, then the
   built-in timestamp hook. The first failed HookResult stops the
   operation before any later hook runs; nothing is persisted and the
   returned LifecycleResult carries the errors.
2. PERSIST: the caller's ``operation(entity)`` performs the I/O. Its
   exceptions propagate unchanged and skip the post-hook.
3. POST_HOOK: an EntityChangeRecord is built and published as
   ``"<entity_type>.created|updated|removed"`` through the EventBus in the
   caller's scope, so inside a unit of work it is held until the outcome is
   known. Extra post-hooks then receive the record.

Usage:
    lifecycle = EntityLifecycleDispatcher(bus)
    lifecycle.add_pre_hook(LifecycleOperation.CREATE, require_email, entity_type="user")

    result = lifecycle.wrap_create(user, session.add, scope)
    if not result.ok:
        return result.errors
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from transactional_events.core.events.base import Event, SourceRef
from transactional_events.core.events.transaction import utc_now
from transactional_events.core.lifecycle.hooks import (
    HookResult,
    LifecycleOperation,
    TimestampStamper,
    entity_type_name,
    previous_snapshot,
    snapshot,
    stamp_timestamps,
)
from transactional_events.infra.metrics.events import lifecycle_operations_total

if TYPE_CHECKING:
    from transactional_events.core.events.bus import EventBus
    from transactional_events.core.events.transaction import Clock, ExecutionScope
    from transactional_events.core.lifecycle.hooks import PreHook

logger = logging.getLogger(__name__)

Operation = Callable[[Any], Any]
PostHook = Callable[["EntityChangeRecord"], None]


@dataclass(frozen=True)
class EntityChangeRecord:
    """What a persisted lifecycle operation changed.

    Attributes:
        operation: create, update or remove
        entity_type: Event type prefix of the entity
        entity_id: The entity's ``id`` after persistence, if it has one
        before: Snapshot before the operation (None for creates)
        after: Snapshot after the operation (None for removes)
    """

    operation: LifecycleOperation
    entity_type: str
    entity_id: Any
    before: dict[str, Any] | None
    after: dict[str, Any] | None

    @property
    def event_type(self) -> str:
        return f"{self.entity_type}.{self.operation.past_tense}"

    def changes(self) -> dict[str, tuple[Any, Any]]:
        """Map of field -> (old, new) for every field whose value differs."""
        before = self.before or {}
        after = self.after or {}
        return {
            key: (before.get(key), after.get(key))
            for key in before.keys() | after.keys()
            if before.get(key) != after.get(key)
        }

    def payload(self) -> dict[str, Any]:
        """Event payload: the entity snapshot, plus ``changes`` for updates."""
        data: dict[str, Any] = {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity": self.after if self.after is not None else self.before,
        }
        if self.operation is LifecycleOperation.UPDATE:
            data["changes"] = self.changes()
        return data


@dataclass(frozen=True)
class LifecycleResult:
    """Result of a wrapped lifecycle operation.

    Attributes:
        ok: True when the entity was persisted and the post-hook ran
        entity: The entity operated on
        errors: Pre-hook validation errors when ``ok`` is False
        record: The change record when ``ok`` is True
        value: Whatever the persistence operation returned
    """

    ok: bool
    entity: Any
    errors: tuple[str, ...] = ()
    record: EntityChangeRecord | None = None
    value: Any = None


@dataclass(frozen=True)
class _HookEntry:
    operation: LifecycleOperation
    hook: Callable[..., Any]
    entity_type: str | None = field(default=None)

    def applies_to(self, operation: LifecycleOperation, entity_type: str) -> bool:
        return self.operation is operation and self.entity_type in (None, entity_type)


class EntityLifecycleDispatcher:
    """Wraps create/update/remove operations with hooks and change events."""

    def __init__(
        self,
        bus: EventBus,
        *,
        clock: Clock = utc_now,
        timestamps: bool = True,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            bus: Bus the change events are published on.
            clock: Time source for the built-in timestamp hook. The shared
                ``stamp_timestamps`` hook is used with the default clock.
            timestamps: Stamp ``created_at``/``updated_at`` on creates and
                updates, after every registered pre-hook has passed.
        """
        self.bus = bus
        self._pre_hooks: list[_HookEntry] = []
        self._post_hooks: list[_HookEntry] = []
        # Run only once every registered pre-hook has passed
        self._builtin_hooks: list[_HookEntry] = []
        if timestamps:
            stamper = stamp_timestamps if clock is utc_now else TimestampStamper(clock)
            self._builtin_hooks.append(_HookEntry(LifecycleOperation.CREATE, stamper))
            self._builtin_hooks.append(_HookEntry(LifecycleOperation.UPDATE, stamper))

    def add_pre_hook(
        self,
        operation: LifecycleOperation,
        hook: PreHook,
        entity_type: str | None = None,
    ) -> None:
        """Register a pre-hook for ``operation``, optionally for one entity type."""
        self._pre_hooks.append(_HookEntry(LifecycleOperation(operation), hook, entity_type))

    def add_post_hook(
        self,
        operation: LifecycleOperation,
        hook: PostHook,
        entity_type: str | None = None,
    ) -> None:
        """Register a hook receiving the EntityChangeRecord after the change event."""
        self._post_hooks.append(_HookEntry(LifecycleOperation(operation), hook, entity_type))

    def wrap_create(
        self,
        entity: Any,
        operation: Operation,
        scope: ExecutionScope | None = None,
    ) -> LifecycleResult:
        return self._wrap(LifecycleOperation.CREATE, entity, operation, scope, before=None)

    def wrap_update(
        self,
        entity: Any,
        operation: Operation,
        scope: ExecutionScope | None = None,
        *,
        before: dict[str, Any] | None = None,
    ) -> LifecycleResult:
        """Wrap an update.

        Args:
            before: Snapshot taken before the caller mutated the entity.
                Defaults to the SQLAlchemy attribute history for mapped
                instances and to the current state otherwise.
        """
        if before is None:
            before = previous_snapshot(entity)
        return self._wrap(LifecycleOperation.UPDATE, entity, operation, scope, before=before)

    def wrap_remove(
        self,
        entity: Any,
        operation: Operation,
        scope: ExecutionScope | None = None,
    ) -> LifecycleResult:
        return self._wrap(
            LifecycleOperation.REMOVE, entity, operation, scope, before=snapshot(entity)
        )

    def _wrap(
        self,
        op: LifecycleOperation,
        entity: Any,
        persist: Operation,
        scope: ExecutionScope | None,
        *,
        before: dict[str, Any] | None,
    ) -> LifecycleResult:
        entity_type = entity_type_name(entity)

        errors = self._run_pre_hooks(op, entity, entity_type)
        if errors is not None:
            self._record(op, "rejected")
            logger.info(
                "Lifecycle operation rejected by pre-hook",
                extra={"operation": op.value, "entity_type": entity_type, "errors": list(errors)},
            )
            return LifecycleResult(ok=False, entity=entity, errors=errors)

        value = persist(entity)

        record = EntityChangeRecord(
            operation=op,
            entity_type=entity_type,
            entity_id=getattr(entity, "id", None),
            before=before,
            after=None if op is LifecycleOperation.REMOVE else snapshot(entity),
        )
        self._post_hook(record, entity, scope)
        self._record(op, "persisted")
        return LifecycleResult(ok=True, entity=entity, record=record, value=value)

    def _run_pre_hooks(
        self,
        op: LifecycleOperation,
        entity: Any,
        entity_type: str,
    ) -> tuple[str, ...] | None:
        for entry in (*self._pre_hooks, *self._builtin_hooks):
            if not entry.applies_to(op, entity_type):
                continue
            result: HookResult | None = entry.hook(entity, op)
            if result is not None and not result.passed:
                return result.errors or (f"{op.value} rejected for {entity_type}",)
        return None

    def _post_hook(
        self,
        record: EntityChangeRecord,
        entity: Any,
        scope: ExecutionScope | None,
    ) -> None:
        event = Event(
            type_id=record.event_type,
            payload=record.payload(),
            source=SourceRef.of(entity),
        )
        self.bus.publish(event, scope)
        for entry in self._post_hooks:
            if entry.applies_to(record.operation, record.entity_type):
                entry.hook(record)

    def _record(self, op: LifecycleOperation, result: str) -> None:
        if self.bus.settings.metrics_enabled:
            lifecycle_operations_total.labels(operation=op.value, result=result).inc()


__all__ = [
    "EntityChangeRecord",
    "EntityLifecycleDispatcher",
    "LifecycleResult",
    "Operation",
    "PostHook",
]
