"""Prometheus metrics."""

from transactional_events.infra.metrics.events import (
    before_commit_vetoes_total,
    events_published_total,
    lifecycle_operations_total,
    listener_invocations_total,
    phase_dispatch_duration_seconds,
    transactions_completed_total,
)

__all__ = [
    "before_commit_vetoes_total",
    "events_published_total",
    "lifecycle_operations_total",
    "listener_invocations_total",
    "phase_dispatch_duration_seconds",
    "transactions_completed_total",
]
