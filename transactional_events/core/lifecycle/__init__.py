"""Entity lifecycle hooks feeding the event bus.

Usage:
    from transactional_events.core.lifecycle import (
        EntityLifecycleDispatcher,
        HookResult,
        LifecycleOperation,
    )

    lifecycle = EntityLifecycleDispatcher(bus)
    result = lifecycle.wrap_create(user, repository.add, scope)
"""

from transactional_events.core.lifecycle.associations import (
    back_reference_name,
    children_of,
    link,
    unlink,
)
from transactional_events.core.lifecycle.dispatcher import (
    EntityChangeRecord,
    EntityLifecycleDispatcher,
    LifecycleResult,
)
from transactional_events.core.lifecycle.hooks import (
    HookResult,
    LifecycleOperation,
    TimestampStamper,
    entity_type_name,
    previous_snapshot,
    snapshot,
    stamp_timestamps,
)

__all__ = [
    "EntityChangeRecord",
    "EntityLifecycleDispatcher",
    "HookResult",
    "LifecycleOperation",
    "LifecycleResult",
    "TimestampStamper",
    "back_reference_name",
    "children_of",
    "entity_type_name",
    "link",
    "previous_snapshot",
    "snapshot",
    "stamp_timestamps",
    "unlink",
]
