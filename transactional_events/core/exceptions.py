"""Exception classes for the transactional event core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event
    from transactional_events.core.events.registry import Phase


class EventCoreError(Exception):
    """Base exception for the event core.

    All exceptions raised by the core inherit from this class so callers
    can catch the whole family with a single ``except`` clause.

    Attributes:
        detail: Human-readable error message.
        type: Error type identifier.
        extra: Additional context-specific information about the error.

    Example:
        raise EventCoreError(
            detail="Registry sealed",
            type="registry-sealed",
            extra={"registration_id": "audit.on_user_created#3"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "event-core-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize event core exception.

        Args:
            detail: Human-readable error message.
            type: Error type identifier.
            extra: Additional context about the error.
        """
        self.detail = detail
        self.type = type
        self.extra = extra or {}
        super().__init__(detail)


class ConfigurationError(EventCoreError):
    """Raised for invalid listener configuration.

    Covers subscribing after the registry is sealed, duplicate registration
    ids, and registrations that can never be honoured (for example an ASYNC
    listener in the BEFORE_COMMIT phase). Fatal at startup.
    """

    def __init__(
        self,
        detail: str,
        type: str = "configuration-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail=detail, type=type, extra=extra)


class TransactionStateError(EventCoreError):
    """Raised when a transaction context is used in an illegal state.

    Fatal to the caller's unit of work.
    """

    def __init__(
        self,
        detail: str,
        type: str = "transaction-state-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail=detail, type=type, extra=extra)


class AlreadyActiveError(TransactionStateError):
    """Raised when beginning a transaction while one is already current."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            detail=f"Transaction {transaction_id} is already active in this scope",
            type="transaction-already-active",
            extra={"transaction_id": transaction_id},
        )
        self.transaction_id = transaction_id


class NoActiveTransactionError(TransactionStateError):
    """Raised when a boundary call finds no current transaction."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            detail=f"No active transaction for {operation}",
            type="no-active-transaction",
            extra={"operation": operation},
        )


class InvalidTransitionError(TransactionStateError):
    """Raised for a transaction state transition the state machine forbids."""

    def __init__(self, transaction_id: str, current: str, target: str) -> None:
        super().__init__(
            detail=(
                f"Transaction {transaction_id} cannot move from "
                f"{current} to {target}"
            ),
            type="invalid-transition",
            extra={
                "transaction_id": transaction_id,
                "current_state": current,
                "target_state": target,
            },
        )
        self.transaction_id = transaction_id
        self.current = current
        self.target = target


class ListenerError(EventCoreError):
    """A listener handler raised an exception.

    Wraps the original exception (also available as ``__cause__``) together
    with the registration, phase and event it was raised for.
    """

    def __init__(
        self,
        registration_id: str,
        phase: Phase,
        event: Event,
        original: BaseException,
    ) -> None:
        super().__init__(
            detail=(
                f"Listener {registration_id} failed in phase {phase.value} "
                f"for event {event.type_id}: {original!r}"
            ),
            type="listener-error",
            extra={
                "registration_id": registration_id,
                "phase": phase.value,
                "event_type": event.type_id,
                "event_id": event.event_id,
            },
        )
        self.registration_id = registration_id
        self.phase = phase
        self.event = event
        self.original = original
        self.__cause__ = original


class BeforeCommitError(EventCoreError):
    """One or more BEFORE_COMMIT listeners failed; the unit of work must roll back.

    Attributes:
        transaction_id: The transaction whose commit was vetoed.
        errors: Every listener failure, in the order they occurred.
    """

    def __init__(self, transaction_id: str, errors: list[ListenerError]) -> None:
        super().__init__(
            detail=(
                f"{len(errors)} BEFORE_COMMIT listener(s) failed for "
                f"transaction {transaction_id}"
            ),
            type="before-commit-failed",
            extra={
                "transaction_id": transaction_id,
                "registration_ids": [e.registration_id for e in errors],
            },
        )
        self.transaction_id = transaction_id
        self.errors = errors
        if errors:
            self.__cause__ = errors[0]


class AssociationError(EventCoreError):
    """Raised when a parent/child link cannot be made or undone consistently."""

    def __init__(
        self,
        detail: str,
        type: str = "association-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail=detail, type=type, extra=extra)


__all__ = [
    "AlreadyActiveError",
    "AssociationError",
    "BeforeCommitError",
    "ConfigurationError",
    "EventCoreError",
    "InvalidTransitionError",
    "ListenerError",
    "NoActiveTransactionError",
    "TransactionStateError",
]
