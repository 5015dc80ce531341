"""In-process event bus with delivery coupled to unit-of-work outcomes.

Usage:
    from transactional_events import Event, EventBus, ExecutionScope, Phase

    bus = EventBus()

    @bus.listener("user.created", phase=Phase.AFTER_COMMIT)
    def send_welcome_email(event: Event) -> None:
        ...

    bus.seal()
"""

from transactional_events.core.events import (
    AsyncListenerPool,
    CancellationToken,
    CollectingErrorObserver,
    ErrorObserver,
    Event,
    EventBus,
    EventTypeMatcher,
    ExecutionScope,
    ListenerMode,
    ListenerRegistration,
    ListenerRegistry,
    Phase,
    RegistrationHandle,
    SourceRef,
    TransactionContext,
    TransactionOutcome,
    TxState,
)
from transactional_events.core.exceptions import (
    AlreadyActiveError,
    AssociationError,
    BeforeCommitError,
    ConfigurationError,
    EventCoreError,
    InvalidTransitionError,
    ListenerError,
    NoActiveTransactionError,
    TransactionStateError,
)
from transactional_events.core.lifecycle import (
    EntityChangeRecord,
    EntityLifecycleDispatcher,
    HookResult,
    LifecycleOperation,
    LifecycleResult,
    link,
    stamp_timestamps,
    unlink,
)

__version__ = "0.1.0"

__all__ = [
    "AlreadyActiveError",
    "AssociationError",
    "AsyncListenerPool",
    "BeforeCommitError",
    "CancellationToken",
    "CollectingErrorObserver",
    "ConfigurationError",
    "EntityChangeRecord",
    "EntityLifecycleDispatcher",
    "ErrorObserver",
    "Event",
    "EventBus",
    "EventCoreError",
    "EventTypeMatcher",
    "ExecutionScope",
    "HookResult",
    "InvalidTransitionError",
    "LifecycleOperation",
    "LifecycleResult",
    "ListenerError",
    "ListenerMode",
    "ListenerRegistration",
    "ListenerRegistry",
    "NoActiveTransactionError",
    "Phase",
    "RegistrationHandle",
    "SourceRef",
    "TransactionContext",
    "TransactionOutcome",
    "TransactionStateError",
    "TxState",
    "__version__",
    "link",
    "stamp_timestamps",
    "unlink",
]
