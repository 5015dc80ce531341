"""Listener registry with an explicit startup/seal lifecycle.

Listeners are registered explicitly while the application starts, then the
registry is sealed. After sealing it is an immutable table shared read-only
by every execution context, and any further mutation fails with
ConfigurationError.

Usage:
    registry = ListenerRegistry()

    @registry.listener("user.created", phase=Phase.AFTER_COMMIT)
    def send_welcome_email(event: Event) -> None:
        ...

    registry.register(
        ListenerRegistration(
            handler=invalidate_cache,
            matcher="user.*",
            phase=Phase.AFTER_COMMIT,
            priority=10,
        )
    )

    registry.seal()
    registry.matching("user.created", Phase.AFTER_COMMIT)
"""

from __future__ import annotations

import heapq
import inspect
import itertools
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from enum import StrEnum
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Any, TypeVar

from transactional_events.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event

logger = logging.getLogger(__name__)

ListenerHandler = Callable[["Event"], Any]
H = TypeVar("H", bound=ListenerHandler)

_WILDCARD_CHARS = frozenset("*?[")


class Phase(StrEnum):
    """When, relative to a transaction's outcome, a listener runs."""

    IMMEDIATE = "immediate"
    BEFORE_COMMIT = "before_commit"
    AFTER_COMMIT = "after_commit"
    AFTER_ROLLBACK = "after_rollback"
    AFTER_COMPLETION = "after_completion"


class ListenerMode(StrEnum):
    """Whether the publisher waits for a listener (SYNC) or hands it off (ASYNC)."""

    SYNC = "sync"
    ASYNC = "async"


@dataclass(frozen=True, slots=True)
class EventTypeMatcher:
    """Matches event type ids exactly or by glob pattern ("user.*", "*")."""

    pattern: str

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ConfigurationError(
                "Event type matcher pattern must not be empty",
                type="invalid-matcher",
            )

    @property
    def is_wildcard(self) -> bool:
        return any(c in _WILDCARD_CHARS for c in self.pattern)

    def matches(self, type_id: str) -> bool:
        if self.is_wildcard:
            return fnmatchcase(type_id, self.pattern)
        return type_id == self.pattern

    def __str__(self) -> str:
        return self.pattern


def is_coroutine_handler(handler: Any) -> bool:
    """Return True for coroutine functions and objects with an async __call__."""
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


def _handler_name(handler: Any) -> str:
    module = getattr(handler, "__module__", None) or "unknown"
    qualname = getattr(handler, "__qualname__", None) or type(handler).__qualname__
    return f"{module}.{qualname}"


@dataclass(frozen=True)
class ListenerRegistration:
    """A listener bound to an event type matcher and a phase.

    Attributes:
        handler: Callable receiving the Event
        matcher: Event type matcher (a plain string is converted)
        phase: Phase the listener runs in
        priority: Lower runs earlier; ties broken by registration order
        mode: SYNC (publisher waits) or ASYNC (handed to the worker pool)
        id: Unique registration id; generated when omitted
        sequence: Registration order, assigned by the registry
    """

    handler: ListenerHandler
    matcher: EventTypeMatcher | str
    phase: Phase = Phase.IMMEDIATE
    priority: int = 0
    mode: ListenerMode = ListenerMode.SYNC
    id: str | None = None
    sequence: int = field(default=-1, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.matcher, str):
            object.__setattr__(self, "matcher", EventTypeMatcher(self.matcher))

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.sequence)

    @property
    def is_async(self) -> bool:
        return self.mode is ListenerMode.ASYNC

    def matches(self, type_id: str) -> bool:
        return self.matcher.matches(type_id)


@dataclass(frozen=True)
class RegistrationHandle:
    """Returned by subscribe; identifies a registration in its registry."""

    registration: ListenerRegistration
    _registry: ListenerRegistry = field(repr=False, compare=False)

    @property
    def id(self) -> str:
        # Always assigned by the registry before a handle is created
        return self.registration.id  # type: ignore[return-value]

    def unsubscribe(self) -> bool:
        """Remove the registration. Only allowed before the registry is sealed."""
        return self._registry.unregister(self.id)


class ListenerRegistry:
    """Maps event types to ordered listener registrations.

    Write-once/read-many: registrations are added during startup, then
    ``seal()`` freezes the table and builds a per-phase index. Reads after
    sealing need no locking.
    """

    def __init__(self, *, default_priority: int = 0) -> None:
        self._registrations: dict[str, ListenerRegistration] = {}
        self._sequence = itertools.count()
        self._sealed = False
        self._default_priority = default_priority
        # Built at seal(): phase -> type_id -> ordered registrations
        self._exact_index: dict[Phase, dict[str, tuple[ListenerRegistration, ...]]] = {}
        # Built at seal(): phase -> ordered wildcard registrations
        self._pattern_index: dict[Phase, tuple[ListenerRegistration, ...]] = {}

    @property
    def sealed(self) -> bool:
        return self._sealed

    def register(self, registration: ListenerRegistration) -> RegistrationHandle:
        """Add a registration.

        Raises:
            ConfigurationError: If the registry is sealed, the id is already
                taken, or the registration can never be honoured.
        """
        if self._sealed:
            raise ConfigurationError(
                "Listener registry is sealed; register listeners during startup",
                type="registry-sealed",
                extra={"registration_id": registration.id},
            )
        self._validate(registration)

        sequence = next(self._sequence)
        registration_id = registration.id or f"{_handler_name(registration.handler)}#{sequence}"
        if registration_id in self._registrations:
            raise ConfigurationError(
                f"Duplicate listener registration id '{registration_id}'",
                type="duplicate-registration",
                extra={"registration_id": registration_id},
            )

        registration = replace(registration, id=registration_id, sequence=sequence)
        self._registrations[registration_id] = registration

        logger.debug(
            "Registered listener",
            extra={
                "registration_id": registration_id,
                "matcher": str(registration.matcher),
                "phase": registration.phase.value,
                "priority": registration.priority,
                "mode": registration.mode.value,
            },
        )
        return RegistrationHandle(registration, self)

    def listener(
        self,
        event_type: str,
        *,
        phase: Phase = Phase.IMMEDIATE,
        priority: int | None = None,
        mode: ListenerMode = ListenerMode.SYNC,
        id: str | None = None,
    ) -> Callable[[H], H]:
        """Decorator form of register().

        Example:
            @registry.listener("order.placed", phase=Phase.AFTER_COMMIT, priority=5)
            def notify_warehouse(event: Event) -> None:
                ...
        """

        def _register(handler: H) -> H:
            self.register(
                ListenerRegistration(
                    handler=handler,
                    matcher=event_type,
                    phase=phase,
                    priority=self._default_priority if priority is None else priority,
                    mode=mode,
                    id=id,
                )
            )
            return handler

        return _register

    def unregister(self, registration_id: str) -> bool:
        """Remove a registration by id.

        Returns:
            True if removed, False if the id was unknown.

        Raises:
            ConfigurationError: If the registry is sealed.
        """
        if self._sealed:
            raise ConfigurationError(
                "Listener registry is sealed; registrations are immutable",
                type="registry-sealed",
                extra={"registration_id": registration_id},
            )
        return self._registrations.pop(registration_id, None) is not None

    def seal(self) -> None:
        """Freeze the registry and build the lookup index. Idempotent."""
        if self._sealed:
            return

        exact: dict[Phase, dict[str, list[ListenerRegistration]]] = {}
        patterns: dict[Phase, list[ListenerRegistration]] = {}
        for registration in self._ordered():
            matcher = registration.matcher
            if matcher.is_wildcard:
                patterns.setdefault(registration.phase, []).append(registration)
            else:
                exact.setdefault(registration.phase, {}).setdefault(
                    matcher.pattern, []
                ).append(registration)

        self._exact_index = {
            phase: {type_id: tuple(regs) for type_id, regs in by_type.items()}
            for phase, by_type in exact.items()
        }
        self._pattern_index = {phase: tuple(regs) for phase, regs in patterns.items()}
        self._sealed = True

        logger.info(
            "Listener registry sealed",
            extra={
                "registrations": len(self._registrations),
                "phases": sorted(p.value for p in {r.phase for r in self._registrations.values()}),
            },
        )

    def matching(self, type_id: str, phase: Phase) -> tuple[ListenerRegistration, ...]:
        """Registrations for an event type and phase, in dispatch order.

        Dispatch order is ascending priority, ties broken by registration order.
        """
        if not self._sealed:
            return tuple(
                r for r in self._ordered() if r.phase is phase and r.matches(type_id)
            )

        exact = self._exact_index.get(phase, {}).get(type_id, ())
        patterns = [r for r in self._pattern_index.get(phase, ()) if r.matches(type_id)]
        if not patterns:
            return exact
        if not exact:
            return tuple(patterns)
        return tuple(heapq.merge(exact, patterns, key=lambda r: r.sort_key))

    def get(self, registration_id: str) -> ListenerRegistration | None:
        return self._registrations.get(registration_id)

    def _ordered(self) -> list[ListenerRegistration]:
        return sorted(self._registrations.values(), key=lambda r: r.sort_key)

    def _validate(self, registration: ListenerRegistration) -> None:
        if not callable(registration.handler):
            raise ConfigurationError(
                f"Listener handler {registration.handler!r} is not callable",
                type="invalid-handler",
            )
        if registration.phase is Phase.BEFORE_COMMIT and registration.is_async:
            raise ConfigurationError(
                "ASYNC listeners are not allowed in the BEFORE_COMMIT phase",
                type="async-before-commit",
                extra={"registration_id": registration.id},
            )
        if not registration.is_async and is_coroutine_handler(registration.handler):
            raise ConfigurationError(
                "Coroutine handlers must be registered with mode=ASYNC",
                type="coroutine-sync-listener",
                extra={"handler": _handler_name(registration.handler)},
            )

    def __contains__(self, registration_id: object) -> bool:
        return registration_id in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)

    def __iter__(self) -> Iterator[ListenerRegistration]:
        return iter(self._ordered())


__all__ = [
    "EventTypeMatcher",
    "ListenerHandler",
    "ListenerMode",
    "ListenerRegistration",
    "ListenerRegistry",
    "Phase",
    "RegistrationHandle",
    "is_coroutine_handler",
]
