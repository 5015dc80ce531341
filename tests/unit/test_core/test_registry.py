"""Unit tests for the listener registry."""
from __future__ import annotations

import pytest

from transactional_events.core.events.registry import (
    EventTypeMatcher,
    ListenerMode,
    ListenerRegistration,
    ListenerRegistry,
    Phase,
    is_coroutine_handler,
)
from transactional_events.core.exceptions import ConfigurationError


def _noop(event):
    return None


def _registration(matcher="user.created", **kwargs):
    return ListenerRegistration(handler=kwargs.pop("handler", _noop), matcher=matcher, **kwargs)


# ──────────────────────────────────────────────────────────────
# EventTypeMatcher
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestEventTypeMatcher:
    """Tests for exact and wildcard type matching."""

    def test_exact_match(self):
        matcher = EventTypeMatcher("user.created")

        assert not matcher.is_wildcard
        assert matcher.matches("user.created")
        assert not matcher.matches("user.created.v2")

    def test_glob_match(self):
        matcher = EventTypeMatcher("user.*")

        assert matcher.is_wildcard
        assert matcher.matches("user.created")
        assert matcher.matches("user.removed")
        assert not matcher.matches("order.created")

    def test_matching_is_case_sensitive(self):
        assert not EventTypeMatcher("user.*").matches("User.created")

    def test_empty_pattern_rejected(self):
        with pytest.raises(ConfigurationError):
            EventTypeMatcher("")

    def test_registration_converts_string_matcher(self):
        registration = _registration("order.*")

        assert isinstance(registration.matcher, EventTypeMatcher)
        assert registration.matches("order.placed")


# ──────────────────────────────────────────────────────────────
# Registration
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestRegister:
    """Tests for adding registrations during startup."""

    def test_register_assigns_default_id_and_sequence(self):
        registry = ListenerRegistry()

        handle = registry.register(_registration())

        assert handle.id.endswith("_noop#0")
        assert handle.id in registry
        assert handle.registration.sequence == 0
        assert len(registry) == 1

    def test_explicit_id_is_kept(self):
        registry = ListenerRegistry()

        handle = registry.register(_registration(id="audit"))

        assert handle.id == "audit"
        assert registry.get("audit") is handle.registration

    def test_duplicate_id_rejected(self):
        registry = ListenerRegistry()
        registry.register(_registration(id="audit"))

        with pytest.raises(ConfigurationError) as exc_info:
            registry.register(_registration(id="audit"))

        assert exc_info.value.type == "duplicate-registration"

    def test_register_after_seal_rejected(self):
        registry = ListenerRegistry()
        registry.seal()

        with pytest.raises(ConfigurationError) as exc_info:
            registry.register(_registration())

        assert exc_info.value.type == "registry-sealed"

    def test_async_before_commit_rejected(self):
        registry = ListenerRegistry()

        with pytest.raises(ConfigurationError):
            registry.register(
                _registration(phase=Phase.BEFORE_COMMIT, mode=ListenerMode.ASYNC)
            )

    def test_coroutine_handler_must_be_async(self):
        async def handler(event):
            return None

        registry = ListenerRegistry()

        with pytest.raises(ConfigurationError):
            registry.register(_registration(handler=handler))

        handle = registry.register(_registration(handler=handler, mode=ListenerMode.ASYNC))
        assert handle.registration.is_async

    def test_non_callable_handler_rejected(self):
        registry = ListenerRegistry()

        with pytest.raises(ConfigurationError):
            registry.register(_registration(handler="not-callable"))

    def test_unsubscribe_before_seal(self):
        registry = ListenerRegistry()
        handle = registry.register(_registration())

        assert handle.unsubscribe() is True
        assert handle.id not in registry
        assert registry.unregister("unknown") is False

    def test_unsubscribe_after_seal_rejected(self):
        registry = ListenerRegistry()
        handle = registry.register(_registration())
        registry.seal()

        with pytest.raises(ConfigurationError):
            handle.unsubscribe()

    def test_listener_decorator_returns_handler(self):
        registry = ListenerRegistry(default_priority=5)

        @registry.listener("user.created", phase=Phase.AFTER_COMMIT)
        def on_user_created(event):
            return None

        (registration,) = registry.matching("user.created", Phase.AFTER_COMMIT)
        assert registration.handler is on_user_created
        assert registration.priority == 5
        assert "on_user_created" in registration.id

    def test_seal_is_idempotent(self):
        registry = ListenerRegistry()
        registry.seal()
        registry.seal()

        assert registry.sealed

    def test_is_coroutine_handler_detects_async_call(self):
        class Handler:
            async def __call__(self, event):
                return None

        assert is_coroutine_handler(Handler())
        assert not is_coroutine_handler(_noop)


# ──────────────────────────────────────────────────────────────
# Lookup
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestMatching:
    """Tests for dispatch-order lookups."""

    def _ids(self, registrations):
        return [r.id for r in registrations]

    def test_ascending_priority(self):
        registry = ListenerRegistry()
        registry.register(_registration(id="late", priority=2))
        registry.register(_registration(id="early", priority=1))
        registry.seal()

        assert self._ids(registry.matching("user.created", Phase.IMMEDIATE)) == ["early", "late"]

    def test_ties_broken_by_registration_order(self):
        registry = ListenerRegistry()
        for name in ("a", "b", "c"):
            registry.register(_registration(id=name))
        registry.seal()

        assert self._ids(registry.matching("user.created", Phase.IMMEDIATE)) == ["a", "b", "c"]

    def test_wildcards_merge_with_exact_by_priority(self):
        registry = ListenerRegistry()
        registry.register(_registration("user.created", id="exact-5", priority=5))
        registry.register(_registration("user.*", id="glob-1", priority=1))
        registry.register(_registration("*", id="any-5", priority=5))
        registry.register(_registration("user.created", id="exact-0", priority=0))
        registry.seal()

        assert self._ids(registry.matching("user.created", Phase.IMMEDIATE)) == [
            "exact-0",
            "glob-1",
            "exact-5",
            "any-5",
        ]

    def test_lookup_is_phase_specific(self):
        registry = ListenerRegistry()
        registry.register(_registration(id="commit", phase=Phase.AFTER_COMMIT))
        registry.register(_registration(id="rollback", phase=Phase.AFTER_ROLLBACK))
        registry.seal()

        assert self._ids(registry.matching("user.created", Phase.AFTER_COMMIT)) == ["commit"]
        assert self._ids(registry.matching("user.created", Phase.AFTER_ROLLBACK)) == ["rollback"]
        assert registry.matching("user.created", Phase.BEFORE_COMMIT) == ()

    def test_unsealed_lookup_matches_sealed_lookup(self):
        registry = ListenerRegistry()
        registry.register(_registration("user.*", id="glob", priority=3))
        registry.register(_registration("user.created", id="exact", priority=3))
        registry.register(_registration("user.created", id="first", priority=-1))

        before = self._ids(registry.matching("user.created", Phase.IMMEDIATE))
        registry.seal()
        after = self._ids(registry.matching("user.created", Phase.IMMEDIATE))

        assert before == after == ["first", "glob", "exact"]

    def test_iteration_in_dispatch_order(self):
        registry = ListenerRegistry()
        registry.register(_registration(id="b", priority=1))
        registry.register(_registration(id="a", priority=0))

        assert [r.id for r in registry] == ["a", "b"]
