"""Prometheus metrics for event publishing and phase dispatch.

Usage:
    from transactional_events.infra.metrics.events import (
        events_published_total,
        listener_invocations_total,
    )

    events_published_total.labels(mode="enqueued").inc()
    listener_invocations_total.labels(
        phase="after_commit", mode="sync", status="success"
    ).inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Publishing
# =============================================================================

events_published_total = Counter(
    "events_published_total",
    "Total number of events published to the bus",
    labelnames=["mode"],
)
"""
Counter for every call to EventBus.publish.

Labels:
    mode: ``immediate`` (no transaction, dispatched in place) or
        ``enqueued`` (held on the current transaction)
"""

# =============================================================================
# Listener dispatch
# =============================================================================

listener_invocations_total = Counter(
    "listener_invocations_total",
    "Total number of listener invocations",
    labelnames=["phase", "mode", "status"],
)
"""
Counter for listener invocations.

Labels:
    phase: immediate, before_commit, after_commit, after_rollback, after_completion
    mode: sync or async
    status: success, failed, scheduled, skipped
"""

phase_dispatch_duration_seconds = Histogram(
    "phase_dispatch_duration_seconds",
    "Time spent dispatching one phase of a transaction's pending events",
    labelnames=["phase"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
)
"""
Histogram of synchronous dispatch time per phase (ASYNC work excluded).
"""

# =============================================================================
# Transactions
# =============================================================================

transactions_completed_total = Counter(
    "transactions_completed_total",
    "Total number of transaction contexts that reached COMPLETED",
    labelnames=["outcome"],
)
"""
Counter for completed transaction contexts.

Labels:
    outcome: committed or rolled_back
"""

before_commit_vetoes_total = Counter(
    "before_commit_vetoes_total",
    "Total number of commits vetoed by a failing BEFORE_COMMIT listener",
)

# =============================================================================
# Entity lifecycle
# =============================================================================

lifecycle_operations_total = Counter(
    "lifecycle_operations_total",
    "Total number of wrapped entity lifecycle operations",
    labelnames=["operation", "result"],
)
"""
Counter for EntityLifecycleDispatcher operations.

Labels:
    operation: create, update or remove
    result: persisted or rejected (a pre-hook failed)
"""


__all__ = [
    "before_commit_vetoes_total",
    "events_published_total",
    "lifecycle_operations_total",
    "listener_invocations_total",
    "phase_dispatch_duration_seconds",
    "transactions_completed_total",
]
