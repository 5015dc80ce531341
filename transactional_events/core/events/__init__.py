"""Transaction-aware in-process event bus.

Events published while a unit of work is open are held on its
TransactionContext and delivered in phases once the outcome is known;
events published outside a transaction are delivered immediately.

Usage:
    from transactional_events.core.events import (
        Event,
        EventBus,
        ExecutionScope,
        Phase,
    )

    bus = EventBus()

    @bus.listener("order.placed", phase=Phase.AFTER_COMMIT)
    def notify_warehouse(event: Event) -> None:
        ...

    bus.seal()

    scope = ExecutionScope()
    with bus.unit_of_work(scope, commit=session.commit, rollback=session.rollback):
        bus.publish(Event(type_id="order.placed", payload={"order_id": 7}), scope)
"""

from transactional_events.core.events.base import Event, SourceRef, TransactionOutcome
from transactional_events.core.events.bus import EventBus
from transactional_events.core.events.dispatch import (
    CollectingErrorObserver,
    ErrorObserver,
    ListenerDispatcher,
)
from transactional_events.core.events.registry import (
    EventTypeMatcher,
    ListenerMode,
    ListenerRegistration,
    ListenerRegistry,
    Phase,
    RegistrationHandle,
)
from transactional_events.core.events.scheduler import PhaseScheduler
from transactional_events.core.events.transaction import (
    ExecutionScope,
    PendingEvent,
    TransactionContext,
    TxState,
)
from transactional_events.core.events.workers import AsyncListenerPool, CancellationToken

__all__ = [
    "AsyncListenerPool",
    "CancellationToken",
    "CollectingErrorObserver",
    "ErrorObserver",
    # Event model
    "Event",
    # Bus
    "EventBus",
    "EventTypeMatcher",
    # Transactions
    "ExecutionScope",
    "ListenerDispatcher",
    # Registration
    "ListenerMode",
    "ListenerRegistration",
    "ListenerRegistry",
    "PendingEvent",
    "Phase",
    "PhaseScheduler",
    "RegistrationHandle",
    "SourceRef",
    "TransactionContext",
    "TransactionOutcome",
    "TxState",
]
