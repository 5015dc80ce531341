"""Listener invocation with per-listener failure isolation.

The ListenerDispatcher invokes the registrations matching an event in one
phase, in dispatch order. A SYNC listener that raises is logged and
the next listener still runs; the failures are returned to the caller,
which decides whether they veto a commit (BEFORE_COMMIT) or go to the error
observer (every other phase). ASYNC listeners are handed to the
AsyncListenerPool and report their own failures to the observer.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from transactional_events.core.exceptions import ListenerError
from transactional_events.infra.metrics.events import listener_invocations_total

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event
    from transactional_events.core.events.registry import (
        ListenerRegistration,
        ListenerRegistry,
        Phase,
    )
    from transactional_events.core.events.workers import AsyncListenerPool, AsyncStatus

logger = logging.getLogger(__name__)

ErrorObserver = Callable[[ListenerError], None]


class CollectingErrorObserver:
    """Error observer that keeps every reported ListenerError.

    Safe to use from ASYNC worker threads.

    Example:
        observer = CollectingErrorObserver()
        bus = EventBus(error_observer=observer)
        ...
        assert not observer.errors
    """

    def __init__(self) -> None:
        self._errors: list[ListenerError] = []
        self._lock = threading.Lock()

    def __call__(self, error: ListenerError) -> None:
        with self._lock:
            self._errors.append(error)

    @property
    def errors(self) -> list[ListenerError]:
        with self._lock:
            return list(self._errors)

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()


class ListenerDispatcher:
    """Invokes matching listeners for one event and phase."""

    def __init__(
        self,
        registry: ListenerRegistry,
        pool: AsyncListenerPool,
        *,
        error_observer: ErrorObserver | None = None,
        log_errors: bool = True,
        metrics_enabled: bool = True,
    ) -> None:
        self.registry = registry
        self.pool = pool
        self.error_observer = error_observer
        self.log_errors = log_errors
        self.metrics_enabled = metrics_enabled

    def dispatch(
        self,
        event: Event,
        phase: Phase,
        *,
        cancellation: Any = None,
    ) -> list[ListenerError]:
        """Run every listener matching ``event`` in ``phase``.

        SYNC listeners run inline in dispatch order; ASYNC listeners are
        scheduled and not awaited.

        Returns:
            The SYNC listener failures, in the order they occurred. They are
            logged but not yet reported to the error observer.
        """
        failures: list[ListenerError] = []
        for registration in self.registry.matching(event.type_id, phase):
            if registration.is_async:
                self._schedule(registration, event, phase, cancellation)
                continue
            error = self._invoke(registration, event, phase)
            if error is not None:
                failures.append(error)
        return failures

    def report(self, errors: list[ListenerError]) -> None:
        """Send failures to the error observer."""
        for error in errors:
            self._observe(error)

    def _invoke(
        self,
        registration: ListenerRegistration,
        event: Event,
        phase: Phase,
    ) -> ListenerError | None:
        try:
            registration.handler(event)
        except Exception as exc:
            error = ListenerError(registration.id or "?", phase, event, exc)
            self._record(phase, registration, "failed")
            self._log_failure(error)
            return error
        self._record(phase, registration, "success")
        return None

    def _schedule(
        self,
        registration: ListenerRegistration,
        event: Event,
        phase: Phase,
        cancellation: Any,
    ) -> None:
        def report(status: AsyncStatus, exc: BaseException | None) -> None:
            self._record(phase, registration, status)
            if exc is None:
                return
            error = ListenerError(registration.id or "?", phase, event, exc)
            self._log_failure(error)
            self._observe(error)

        self.pool.submit(registration.handler, event, report, cancellation=cancellation)
        self._record(phase, registration, "scheduled")

    def _observe(self, error: ListenerError) -> None:
        if self.error_observer is None:
            return
        try:
            self.error_observer(error)
        except Exception:
            logger.exception(
                "Error observer raised while handling a listener failure",
                extra={"registration_id": error.registration_id},
            )

    def _log_failure(self, error: ListenerError) -> None:
        if not self.log_errors:
            return
        logger.error(
            "Listener failed",
            exc_info=(type(error.original), error.original, error.original.__traceback__),
            extra={
                "registration_id": error.registration_id,
                "phase": error.phase.value,
                "event_type": error.event.type_id,
                "event_id": error.event.event_id,
                "transaction_id": error.event.transaction_id,
            },
        )

    def _record(self, phase: Phase, registration: ListenerRegistration, status: str) -> None:
        if self.metrics_enabled:
            listener_invocations_total.labels(
                phase=phase.value,
                mode=registration.mode.value,
                status=status,
            ).inc()


__all__ = ["CollectingErrorObserver", "ErrorObserver", "ListenerDispatcher"]
