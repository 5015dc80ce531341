"""Unit tests for the entity lifecycle dispatcher."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest

from transactional_events.core.events import Phase, TransactionOutcome
from transactional_events.core.lifecycle import (
    EntityLifecycleDispatcher,
    HookResult,
    LifecycleOperation,
    snapshot,
    stamp_timestamps,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@dataclass
class User:
    email: str
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class LineItem:
    __event_name__ = "order_line"

    sku: str
    id: int | None = None


class Store:
    """In-memory persistence collaborator."""

    def __init__(self):
        self.rows = {}
        self._next_id = 1

    def add(self, entity):
        if entity.id is None:
            entity.id = self._next_id
            self._next_id += 1
        self.rows[entity.id] = snapshot(entity)
        return entity.id

    def delete(self, entity):
        del self.rows[entity.id]


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def lifecycle(bus, clock):
    return EntityLifecycleDispatcher(bus, clock=clock)


@pytest.fixture
def store():
    return Store()


@pytest.fixture
def listen(bus, recorder):
    """Register a recorder listener for a type pattern and phase."""

    def _listen(name, matcher="*", phase=Phase.IMMEDIATE):
        bus.listener(matcher, phase=phase, id=name)(recorder.handler(name))

    return _listen


# ──────────────────────────────────────────────────────────────
# Timestamps
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestTimestamps:
    """Tests for the built-in timestamp pre-hook."""

    def test_create_sets_equal_timestamps(self, lifecycle, store):
        user = User(email="ada@example.com")

        lifecycle.wrap_create(user, store.add)

        assert user.created_at == user.updated_at == T0

    def test_update_moves_only_updated_at(self, lifecycle, store, clock):
        user = User(email="ada@example.com")
        lifecycle.wrap_create(user, store.add)
        clock.advance(seconds=5)

        user.email = "ada@lovelace.dev"
        lifecycle.wrap_update(user, store.add)

        assert user.created_at == T0
        assert user.updated_at == T0 + timedelta(seconds=5)

    def test_update_strictly_increases_on_clock_tie(self, lifecycle, store):
        user = User(email="ada@example.com")
        lifecycle.wrap_create(user, store.add)
        before = user.updated_at

        lifecycle.wrap_update(user, store.add)
        lifecycle.wrap_update(user, store.add)

        assert user.created_at == T0
        assert user.updated_at > before
        assert user.updated_at == T0 + timedelta(microseconds=2)

    def test_update_with_clock_behind_stored_value(self, lifecycle, store, clock):
        user = User(email="ada@example.com", updated_at=T0 + timedelta(hours=1))

        lifecycle.wrap_update(user, store.add)

        assert user.updated_at == T0 + timedelta(hours=1, microseconds=1)

    def test_entities_without_timestamps_untouched(self, lifecycle, store):
        item = LineItem(sku="SKU-1")

        result = lifecycle.wrap_create(item, store.add)

        assert result.ok
        assert not hasattr(item, "created_at")

    def test_default_clock_uses_shared_stamper(self, bus):
        lifecycle = EntityLifecycleDispatcher(bus)

        assert {entry.hook for entry in lifecycle._builtin_hooks} == {stamp_timestamps}

    def test_timestamps_can_be_disabled(self, bus, store):
        lifecycle = EntityLifecycleDispatcher(bus, timestamps=False)
        user = User(email="ada@example.com")

        lifecycle.wrap_create(user, store.add)

        assert user.created_at is None


# ──────────────────────────────────────────────────────────────
# Pre-hooks
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestPreHooks:
    """Tests for pre-hook results stopping operations."""

    def test_failed_pre_hook_stops_operation(self, lifecycle, store, listen, recorder):
        listen("events")

        def require_company_email(entity, operation):
            if not entity.email.endswith("@example.com"):
                return HookResult.fail("email must be a company address")
            return HookResult.ok()

        lifecycle.add_pre_hook(LifecycleOperation.CREATE, require_company_email)
        user = User(email="ada@gmail.com")

        result = lifecycle.wrap_create(user, store.add)

        assert not result.ok
        assert result.errors == ("email must be a company address",)
        assert result.record is None
        assert store.rows == {}
        assert recorder.names == []
        assert user.created_at is None

    def test_rejected_update_keeps_timestamps(self, lifecycle, store, clock):
        """Validation hooks run before the built-in timestamp hook."""
        user = User(email="ada@example.com")
        lifecycle.wrap_create(user, store.add)
        lifecycle.add_pre_hook(LifecycleOperation.UPDATE, lambda e, op: HookResult.fail("frozen"))
        clock.advance(seconds=5)

        result = lifecycle.wrap_update(user, store.add)

        assert not result.ok
        assert user.updated_at == T0

    def test_validation_hook_sees_unstamped_entity(self, lifecycle, store):
        seen = []
        lifecycle.add_pre_hook(LifecycleOperation.CREATE, lambda e, op: seen.append(e.created_at))
        user = User(email="ada@example.com")

        lifecycle.wrap_create(user, store.add)

        assert seen == [None]
        assert user.created_at == T0

    def test_none_result_means_ok(self, lifecycle, store):
        calls = []
        lifecycle.add_pre_hook(LifecycleOperation.CREATE, lambda e, op: calls.append(op))

        result = lifecycle.wrap_create(User(email="ada@example.com"), store.add)

        assert result.ok
        assert calls == [LifecycleOperation.CREATE]

    def test_failure_without_messages_gets_default_error(self, lifecycle, store):
        lifecycle.add_pre_hook(LifecycleOperation.REMOVE, lambda e, op: HookResult.fail())
        user = User(email="ada@example.com", id=1)

        result = lifecycle.wrap_remove(user, store.delete)

        assert not result.ok
        assert result.errors == ("remove rejected for user",)

    def test_hook_scoped_to_entity_type(self, lifecycle, store):
        lifecycle.add_pre_hook(
            LifecycleOperation.CREATE,
            lambda e, op: HookResult.fail("no line items"),
            entity_type="order_line",
        )

        assert lifecycle.wrap_create(User(email="ada@example.com"), store.add).ok
        assert not lifecycle.wrap_create(LineItem(sku="SKU-1"), store.add).ok

    def test_hook_scoped_to_operation(self, lifecycle, store):
        lifecycle.add_pre_hook(LifecycleOperation.UPDATE, lambda e, op: HookResult.fail("frozen"))

        user = User(email="ada@example.com")
        assert lifecycle.wrap_create(user, store.add).ok
        assert not lifecycle.wrap_update(user, store.add).ok

    def test_pre_hook_runs_before_persistence(self, lifecycle):
        order = []
        lifecycle.add_pre_hook(LifecycleOperation.CREATE, lambda e, op: order.append("pre"))

        lifecycle.wrap_create(User(email="ada@example.com"), lambda e: order.append("persist"))

        assert order == ["pre", "persist"]


# ──────────────────────────────────────────────────────────────
# Persistence and post-hook
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestPostHook:
    """Tests for change events published after persistence."""

    def test_create_publishes_created_event(self, lifecycle, store, listen, recorder):
        listen("events")
        user = User(email="ada@example.com")

        result = lifecycle.wrap_create(user, store.add)

        (event,) = recorder.events_for("events")
        assert event.type_id == "user.created"
        assert event.payload["entity_id"] == 1
        assert event.payload["entity"]["email"] == "ada@example.com"
        assert "changes" not in event.payload
        assert str(event.source) == "User:1"
        assert result.value == 1

    def test_update_payload_carries_changes(self, lifecycle, store, listen, recorder, clock):
        listen("events", "user.updated")
        user = User(email="ada@example.com")
        lifecycle.wrap_create(user, store.add)
        before = snapshot(user)
        clock.advance(seconds=1)

        user.email = "ada@lovelace.dev"
        result = lifecycle.wrap_update(user, store.add, before=before)

        (event,) = recorder.events_for("events")
        assert event.payload["changes"] == {
            "email": ("ada@example.com", "ada@lovelace.dev"),
            "updated_at": (T0, T0 + timedelta(seconds=1)),
        }
        assert result.record.changes() == event.payload["changes"]

    def test_remove_publishes_removed_event(self, lifecycle, store, listen, recorder):
        listen("events", "user.removed")
        user = User(email="ada@example.com")
        lifecycle.wrap_create(user, store.add)

        result = lifecycle.wrap_remove(user, store.delete)

        (event,) = recorder.events_for("events")
        assert event.payload["entity"]["email"] == "ada@example.com"
        assert result.record.after is None
        assert store.rows == {}

    def test_event_name_override(self, lifecycle, store, listen, recorder):
        listen("events")

        lifecycle.wrap_create(LineItem(sku="SKU-1"), store.add)

        assert [e.type_id for e in recorder.events_for("events")] == ["order_line.created"]

    def test_persistence_failure_skips_post_hook(self, lifecycle, listen, recorder):
        listen("events")

        def failing_add(entity):
            raise ConnectionError("database unavailable")

        with pytest.raises(ConnectionError):
            lifecycle.wrap_create(User(email="ada@example.com"), failing_add)

        assert recorder.names == []

    def test_extra_post_hooks_receive_record(self, lifecycle, store):
        records = []
        lifecycle.add_post_hook(LifecycleOperation.CREATE, records.append)
        lifecycle.add_post_hook(LifecycleOperation.CREATE, records.append, entity_type="order_line")

        lifecycle.wrap_create(User(email="ada@example.com"), store.add)

        (record,) = records
        assert record.operation is LifecycleOperation.CREATE
        assert record.entity_type == "user"
        assert record.before is None
        assert record.event_type == "user.created"

    def test_change_event_deferred_inside_transaction(
        self, bus, lifecycle, store, scope, listen, recorder
    ):
        listen("immediate")
        listen("committed", phase=Phase.AFTER_COMMIT)
        listen("rolled-back", phase=Phase.AFTER_ROLLBACK)

        bus.begin_transaction(scope)
        lifecycle.wrap_create(User(email="ada@example.com"), store.add, scope)
        assert recorder.names == []

        bus.on_after_outcome(scope, TransactionOutcome.ROLLED_BACK)

        assert recorder.names == ["rolled-back"]
        assert recorder.events_for("rolled-back")[0].type_id == "user.created"
