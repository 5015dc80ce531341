"""EventBus: the public publish/subscribe API.

``publish`` decides between immediate delivery and deferral:

- no transaction is current in the caller's ExecutionScope: IMMEDIATE
  listeners run now, SYNC ones before ``publish`` returns, ASYNC ones handed
  to the worker pool;
- a transaction is current: the event is stamped with the transaction id
  and appended to its pending queue. No listener runs until the unit-of-work
  boundary calls ``on_before_commit`` / ``on_after_outcome``.

Usage:
    bus = EventBus()

    @bus.listener("user.created", phase=Phase.AFTER_COMMIT)
    def send_welcome_email(event: Event) -> None:
        ...

    bus.seal()

    scope = ExecutionScope("request-42")
    with bus.unit_of_work(scope, commit=session.commit, rollback=session.rollback):
        session.add(user)
        bus.publish(Event(type_id="user.created", payload={"id": user.id}), scope)
    # send_welcome_email runs only if the commit succeeded
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from transactional_events.core.events.base import TransactionOutcome
from transactional_events.core.events.dispatch import ListenerDispatcher
from transactional_events.core.events.registry import (
    ListenerMode,
    ListenerRegistry,
    Phase,
)
from transactional_events.core.events.scheduler import PhaseScheduler
from transactional_events.core.events.transaction import utc_now
from transactional_events.core.events.workers import AsyncListenerPool
from transactional_events.core.settings import get_event_settings
from transactional_events.infra.metrics.events import events_published_total

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event
    from transactional_events.core.events.dispatch import ErrorObserver
    from transactional_events.core.events.registry import (
        ListenerHandler,
        ListenerRegistration,
        RegistrationHandle,
    )
    from transactional_events.core.events.transaction import (
        Clock,
        ExecutionScope,
        TransactionContext,
    )
    from transactional_events.core.settings import EventCoreSettings

logger = logging.getLogger(__name__)

H = TypeVar("H", bound="ListenerHandler")


class EventBus:
    """In-process event bus with transaction-coupled delivery.

    Attributes:
        registry: Listener registry (sealed at the end of startup)
        pool: Worker pool for ASYNC listeners
        dispatcher: Per-listener invocation and failure isolation
        scheduler: Phase-ordered delivery at unit-of-work boundaries
    """

    def __init__(
        self,
        registry: ListenerRegistry | None = None,
        *,
        settings: EventCoreSettings | None = None,
        error_observer: ErrorObserver | None = None,
        pool: AsyncListenerPool | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the bus.

        Args:
            registry: Existing registry; a new one is created when omitted.
            settings: Event core settings; loaded via get_event_settings() when omitted.
            error_observer: Receives listener failures from every phase
                except BEFORE_COMMIT.
            pool: Worker pool for ASYNC listeners.
            clock: Time source for transaction and enqueue timestamps.
        """
        self.settings = settings or get_event_settings()
        self.registry = registry or ListenerRegistry(
            default_priority=self.settings.default_priority
        )
        self.pool = pool or AsyncListenerPool(
            max_workers=self.settings.async_max_workers,
            thread_name_prefix=self.settings.async_thread_name_prefix,
        )
        self.dispatcher = ListenerDispatcher(
            self.registry,
            self.pool,
            error_observer=error_observer,
            log_errors=self.settings.log_listener_errors,
            metrics_enabled=self.settings.metrics_enabled,
        )
        self.scheduler = PhaseScheduler(
            self.dispatcher,
            metrics_enabled=self.settings.metrics_enabled,
            tracing_enabled=self.settings.tracing_enabled,
        )
        self._clock = clock

    # ──────────────────────────────────────────────────────────────
    # Registration (startup window)
    # ──────────────────────────────────────────────────────────────

    def subscribe(self, registration: ListenerRegistration) -> RegistrationHandle:
        """Register a listener.

        Raises:
            ConfigurationError: If the registry is sealed or the registration
                is invalid.
        """
        return self.registry.register(registration)

    def listener(
        self,
        event_type: str,
        *,
        phase: Phase = Phase.IMMEDIATE,
        priority: int | None = None,
        mode: ListenerMode = ListenerMode.SYNC,
        id: str | None = None,
    ) -> Callable[[H], H]:
        """Decorator form of subscribe()."""
        return self.registry.listener(event_type, phase=phase, priority=priority, mode=mode, id=id)

    def seal(self) -> None:
        """End the startup window; the listener table becomes immutable."""
        self.registry.seal()

    # ──────────────────────────────────────────────────────────────
    # Publishing
    # ──────────────────────────────────────────────────────────────

    def publish(
        self,
        event: Event,
        scope: ExecutionScope | None = None,
        *,
        cancellation: Any = None,
    ) -> None:
        """Publish an event.

        Args:
            event: The event to publish.
            scope: The caller's execution scope. Without a scope, or with no
                transaction current in it, delivery is immediate.
            cancellation: Cancellation handle for ASYNC listeners; defaults to
                the scope's.

        Raises:
            TransactionStateError: If the current transaction no longer
                accepts events.
        """
        if self.settings.seal_on_first_publish and not self.registry.sealed:
            self.registry.seal()

        tx = scope.current if scope is not None else None
        if tx is None:
            if cancellation is None and scope is not None:
                cancellation = scope.cancellation
            self._record("immediate")
            errors = self.dispatcher.dispatch(event, Phase.IMMEDIATE, cancellation=cancellation)
            self.dispatcher.report(errors)
            return

        tx.enqueue(event.with_transaction(tx.id))
        self._record("enqueued")
        logger.debug(
            "Event enqueued on transaction",
            extra={
                "transaction_id": tx.id,
                "event_type": event.type_id,
                "event_id": event.event_id,
                "pending": len(tx),
            },
        )

    # ──────────────────────────────────────────────────────────────
    # Unit-of-work boundary
    # ──────────────────────────────────────────────────────────────

    def begin_transaction(self, scope: ExecutionScope) -> TransactionContext:
        """Begin a transaction in ``scope``.

        Raises:
            AlreadyActiveError: If ``scope`` already has a current transaction.
        """
        tx = scope.begin(clock=self._clock)
        logger.debug("Transaction begun", extra={"transaction_id": tx.id, "scope": scope.name})
        return tx

    def on_before_commit(self, scope: ExecutionScope) -> None:
        """Run BEFORE_COMMIT listeners for the current transaction.

        Call while the underlying resource transaction is still open.

        Raises:
            NoActiveTransactionError: If ``scope`` has no current transaction.
            BeforeCommitError: If a listener failed; roll back the unit of work.
        """
        tx = scope.require_current("on_before_commit")
        self.scheduler.before_commit(tx)

    def on_after_outcome(
        self,
        scope: ExecutionScope,
        outcome: TransactionOutcome,
        *,
        cancellation: Any = None,
    ) -> None:
        """Report the final outcome and deliver the pending events.

        The transaction is detached from ``scope`` before any AFTER_* listener
        runs, so events those listeners publish in the same scope are
        delivered immediately.

        Raises:
            NoActiveTransactionError: If ``scope`` has no current transaction.
            InvalidTransitionError: If the outcome is illegal in the current
                state (e.g. COMMITTED without ``on_before_commit``).
        """
        tx = scope.require_current("on_after_outcome")
        self.scheduler.finalize(tx, outcome)
        scope.detach(tx)
        self.scheduler.deliver(
            tx,
            cancellation=cancellation if cancellation is not None else scope.cancellation,
        )

    @contextmanager
    def unit_of_work(
        self,
        scope: ExecutionScope,
        *,
        commit: Callable[[], Any] | None = None,
        rollback: Callable[[], Any] | None = None,
    ) -> Iterator[TransactionContext]:
        """Run a block as a unit of work.

        begin → body → BEFORE_COMMIT → ``commit()`` → AFTER_COMMIT/COMPLETION.
        An exception in the body, a vetoing BEFORE_COMMIT listener or a failing
        ``commit()`` calls ``rollback()``, delivers AFTER_ROLLBACK/COMPLETION
        and re-raises.

        Args:
            scope: The caller's execution scope.
            commit: Commits the underlying resource.
            rollback: Rolls the underlying resource back.
        """
        tx = self.begin_transaction(scope)
        try:
            yield tx
            self.on_before_commit(scope)
            if commit is not None:
                commit()
        except BaseException:
            try:
                if rollback is not None:
                    rollback()
            finally:
                self.on_after_outcome(scope, TransactionOutcome.ROLLED_BACK)
            raise
        self.on_after_outcome(scope, TransactionOutcome.COMMITTED)

    # ──────────────────────────────────────────────────────────────
    # Shutdown
    # ──────────────────────────────────────────────────────────────

    def close(self, wait: bool = True) -> None:
        """Shut down the ASYNC worker pool."""
        self.pool.shutdown(wait=wait)

    def __enter__(self) -> EventBus:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _record(self, mode: str) -> None:
        if self.settings.metrics_enabled:
            events_published_total.labels(mode=mode).inc()


__all__ = ["EventBus"]
