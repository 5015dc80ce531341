"""Transaction context state machine and the execution scope that owns it.

A TransactionContext tracks one unit of work from ACTIVE to COMPLETED and
holds the events published while it was open. Transitions are monotonic:

    ACTIVE ──> COMMITTING ──> COMMITTED ──> COMPLETED
      │            │
      │            v
      └──────> ROLLING_BACK ──> ROLLED_BACK ──> COMPLETED

COMMITTING -> ROLLING_BACK covers a vetoing BEFORE_COMMIT listener and a
failed external commit.

The "current transaction" is held by an ExecutionScope that the caller
creates for its request/thread/task and passes explicitly through the call
chain. A scope holds at most one current transaction; nesting is an error.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, NamedTuple

from transactional_events.core.events.base import TransactionOutcome
from transactional_events.core.exceptions import (
    AlreadyActiveError,
    InvalidTransitionError,
    NoActiveTransactionError,
    TransactionStateError,
)

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class TxState(StrEnum):
    """Lifecycle state of a TransactionContext."""

    ACTIVE = "active"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    COMPLETED = "completed"


_TRANSITIONS: dict[TxState, frozenset[TxState]] = {
    TxState.ACTIVE: frozenset({TxState.COMMITTING, TxState.ROLLING_BACK}),
    TxState.COMMITTING: frozenset({TxState.COMMITTED, TxState.ROLLING_BACK}),
    TxState.COMMITTED: frozenset({TxState.COMPLETED}),
    TxState.ROLLING_BACK: frozenset({TxState.ROLLED_BACK}),
    TxState.ROLLED_BACK: frozenset({TxState.COMPLETED}),
    TxState.COMPLETED: frozenset(),
}


class PendingEvent(NamedTuple):
    """An event waiting for phase-gated delivery."""

    event: Event
    enqueued_at: datetime


class TransactionContext:
    """Per-unit-of-work state and pending event queue.

    Owned exclusively by the unit-of-work boundary code; never shared between
    execution contexts.
    """

    def __init__(self, *, transaction_id: str | None = None, clock: Clock = utc_now) -> None:
        self.id = transaction_id or uuid.uuid4().hex
        self._state = TxState.ACTIVE
        self._pending: list[PendingEvent] = []
        self._clock = clock
        self.began_at = clock()
        self.outcome: TransactionOutcome | None = None

    @property
    def state(self) -> TxState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TxState.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self._state is TxState.COMPLETED

    @property
    def pending_events(self) -> tuple[PendingEvent, ...]:
        """Snapshot of the pending queue in FIFO order."""
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def accepts_events(self) -> bool:
        """True while events may still be enqueued (ACTIVE or COMMITTING)."""
        return self._state in (TxState.ACTIVE, TxState.COMMITTING)

    def pending_at(self, index: int) -> PendingEvent:
        return self._pending[index]

    def enqueue(self, event: Event) -> PendingEvent:
        """Append an event to the pending queue.

        Events published by BEFORE_COMMIT listeners are accepted while the
        transaction is COMMITTING and go through BEFORE_COMMIT themselves.

        Raises:
            TransactionStateError: If the transaction no longer accepts events.
        """
        if not self.accepts_events:
            raise TransactionStateError(
                f"Cannot publish into transaction {self.id} in state {self._state.value}",
                type="transaction-not-active",
                extra={"transaction_id": self.id, "state": self._state.value},
            )
        entry = PendingEvent(event, self._clock())
        self._pending.append(entry)
        return entry

    def drain(self) -> list[PendingEvent]:
        """Remove and return every pending entry in FIFO order."""
        drained, self._pending = self._pending, []
        return drained

    def mark_committing(self) -> None:
        self._transition(TxState.COMMITTING)

    def mark_committed(self) -> None:
        self._transition(TxState.COMMITTED)
        self.outcome = TransactionOutcome.COMMITTED

    def mark_rolling_back(self) -> None:
        self._transition(TxState.ROLLING_BACK)

    def mark_rolled_back(self) -> None:
        self._transition(TxState.ROLLED_BACK)
        self.outcome = TransactionOutcome.ROLLED_BACK

    def mark_completed(self) -> None:
        if self._pending:
            raise TransactionStateError(
                f"Transaction {self.id} still has {len(self._pending)} pending event(s)",
                type="pending-events-remaining",
                extra={"transaction_id": self.id, "pending": len(self._pending)},
            )
        self._transition(TxState.COMPLETED)

    def _transition(self, target: TxState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(self.id, self._state.value, target.value)
        logger.debug(
            "Transaction state change",
            extra={
                "transaction_id": self.id,
                "from_state": self._state.value,
                "to_state": target.value,
            },
        )
        self._state = target

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(id={self.id!r}, "
            f"state={self._state.value}, pending={len(self._pending)})"
        )


class ExecutionScope:
    """Explicit execution context holding the current transaction, if any.

    Create one per request, thread or task and pass it to the bus, the
    lifecycle dispatcher and the unit-of-work boundary. A scope must not be
    used from a second execution context.

    Attributes:
        name: Optional label used in logs (e.g. a request id)
        cancellation: Optional caller-supplied cancellation handle passed
            through to ASYNC listener execution
    """

    def __init__(self, name: str | None = None, *, cancellation: Any = None) -> None:
        self.name = name
        self.cancellation = cancellation
        self._current: TransactionContext | None = None

    @property
    def current(self) -> TransactionContext | None:
        return self._current

    @property
    def in_transaction(self) -> bool:
        return self._current is not None

    def begin(self, *, clock: Clock = utc_now) -> TransactionContext:
        """Begin a transaction in this scope.

        Raises:
            AlreadyActiveError: If a transaction is already current.
        """
        if self._current is not None:
            raise AlreadyActiveError(self._current.id)
        self._current = TransactionContext(clock=clock)
        return self._current

    def require_current(self, operation: str) -> TransactionContext:
        """Return the current transaction or raise NoActiveTransactionError."""
        if self._current is None:
            raise NoActiveTransactionError(operation)
        return self._current

    def detach(self, tx: TransactionContext) -> None:
        """Forget ``tx`` if it is the current transaction."""
        if self._current is tx:
            self._current = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, current={self._current!r})"


__all__ = [
    "Clock",
    "ExecutionScope",
    "PendingEvent",
    "TransactionContext",
    "TxState",
    "utc_now",
]
