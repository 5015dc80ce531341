"""Phase-ordered delivery of a transaction's pending events.

The unit-of-work boundary drives the scheduler:

1. ``before_commit(tx)`` while the transaction is still open. Every pending
   event goes to its BEFORE_COMMIT listeners (SYNC only). If any listener
   fails, BeforeCommitError is raised and the unit of work must roll back.
2. ``finalize(tx, outcome)`` once the external commit succeeded or the
   transaction rolled back; moves the state machine to COMMITTED or
   ROLLED_BACK.
3. ``deliver(tx)`` runs AFTER_COMMIT or AFTER_ROLLBACK listeners, then
   AFTER_COMPLETION listeners with the outcome attached, clears the queue
   and marks the transaction COMPLETED. Failures from here on go to the
   error observer and never affect the outcome.

``after_outcome(tx, outcome)`` performs steps 2 and 3 together.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from typing import TYPE_CHECKING, Any

from transactional_events.core.events.base import TransactionOutcome
from transactional_events.core.events.registry import Phase
from transactional_events.core.events.transaction import TxState
from transactional_events.core.exceptions import (
    BeforeCommitError,
    InvalidTransitionError,
    ListenerError,
)
from transactional_events.infra.logging.context import log_context
from transactional_events.infra.metrics.events import (
    before_commit_vetoes_total,
    phase_dispatch_duration_seconds,
    transactions_completed_total,
)
from transactional_events.infra.tracing import get_tracer

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event
    from transactional_events.core.events.dispatch import ListenerDispatcher
    from transactional_events.core.events.transaction import TransactionContext

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

_OUTCOME_PHASE = {
    TransactionOutcome.COMMITTED: Phase.AFTER_COMMIT,
    TransactionOutcome.ROLLED_BACK: Phase.AFTER_ROLLBACK,
}


class PhaseScheduler:
    """Drains a transaction's pending events in the mandated phase order."""

    def __init__(
        self,
        dispatcher: ListenerDispatcher,
        *,
        metrics_enabled: bool = True,
        tracing_enabled: bool = True,
    ) -> None:
        self.dispatcher = dispatcher
        self.metrics_enabled = metrics_enabled
        self.tracing_enabled = tracing_enabled

    def before_commit(self, tx: TransactionContext) -> None:
        """Mark ``tx`` COMMITTING and run BEFORE_COMMIT listeners.

        Events enqueued by BEFORE_COMMIT listeners are processed in the same
        pass, after the events already pending.

        Raises:
            InvalidTransitionError: If ``tx`` is not ACTIVE.
            BeforeCommitError: If any BEFORE_COMMIT listener raised.
        """
        tx.mark_committing()

        errors: list[ListenerError] = []
        with self._phase_scope(tx, Phase.BEFORE_COMMIT) as counter:
            index = 0
            while index < len(tx):
                event = tx.pending_at(index).event
                errors.extend(self.dispatcher.dispatch(event, Phase.BEFORE_COMMIT))
                index += 1
            counter["events"] = index

        if errors:
            if self.metrics_enabled:
                before_commit_vetoes_total.inc()
            logger.warning(
                "Commit vetoed by BEFORE_COMMIT listener",
                extra={
                    "transaction_id": tx.id,
                    "failures": len(errors),
                    "registration_ids": [e.registration_id for e in errors],
                },
            )
            raise BeforeCommitError(tx.id, errors)

    def finalize(self, tx: TransactionContext, outcome: TransactionOutcome) -> None:
        """Record the final outcome on ``tx``.

        A commit is only legal from COMMITTING (``before_commit`` must have
        run); a rollback is legal from ACTIVE, COMMITTING or ROLLING_BACK.

        Raises:
            InvalidTransitionError: If the state machine forbids the outcome.
        """
        if outcome is TransactionOutcome.COMMITTED:
            tx.mark_committed()
            return
        if tx.state is not TxState.ROLLING_BACK:
            tx.mark_rolling_back()
        tx.mark_rolled_back()

    def deliver(self, tx: TransactionContext, *, cancellation: Any = None) -> None:
        """Run the outcome phase and AFTER_COMPLETION, then complete ``tx``.

        ``tx`` must already be COMMITTED or ROLLED_BACK (see ``finalize``).
        """
        outcome = tx.outcome
        if outcome is None:
            raise InvalidTransitionError(tx.id, tx.state.value, TxState.COMPLETED.value)

        pending = tx.drain()
        events = [entry.event for entry in pending]
        try:
            self._run_phase(tx, _OUTCOME_PHASE[outcome], events, cancellation)
            self._run_phase(
                tx,
                Phase.AFTER_COMPLETION,
                [event.with_outcome(outcome) for event in events],
                cancellation,
            )
        finally:
            tx.mark_completed()
            if self.metrics_enabled:
                transactions_completed_total.labels(outcome=outcome.value).inc()

        logger.debug(
            "Transaction completed",
            extra={
                "transaction_id": tx.id,
                "outcome": outcome.value,
                "events": len(events),
            },
        )

    def after_outcome(
        self,
        tx: TransactionContext,
        outcome: TransactionOutcome,
        *,
        cancellation: Any = None,
    ) -> None:
        """Finalize ``tx`` with ``outcome`` and deliver its pending events."""
        self.finalize(tx, outcome)
        self.deliver(tx, cancellation=cancellation)

    def _run_phase(
        self,
        tx: TransactionContext,
        phase: Phase,
        events: list[Event],
        cancellation: Any,
    ) -> None:
        with self._phase_scope(tx, phase) as counter:
            for event in events:
                errors = self.dispatcher.dispatch(event, phase, cancellation=cancellation)
                self.dispatcher.report(errors)
            counter["events"] = len(events)

    @contextmanager
    def _phase_scope(self, tx: TransactionContext, phase: Phase) -> Iterator[dict[str, int]]:
        counter = {"events": 0}
        span_cm = (
            tracer.start_as_current_span(f"events.phase.{phase.value}")
            if self.tracing_enabled
            else nullcontext()
        )
        start = time.perf_counter()
        with log_context(transaction_id=tx.id, phase=phase.value), span_cm as span:
            try:
                yield counter
            finally:
                duration = time.perf_counter() - start
                if span is not None:
                    span.set_attribute("events.transaction_id", tx.id)
                    span.set_attribute("events.count", counter["events"])
                if self.metrics_enabled:
                    phase_dispatch_duration_seconds.labels(phase=phase.value).observe(duration)
                logger.debug(
                    "Phase dispatched",
                    extra={"events": counter["events"], "duration_ms": round(duration * 1000, 3)},
                )


__all__ = ["PhaseScheduler"]
