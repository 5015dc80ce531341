"""Unit tests for the ASYNC listener worker pool."""
from __future__ import annotations

import asyncio
import threading

import pytest

from transactional_events.core.events.base import Event
from transactional_events.core.events.workers import (
    AsyncListenerPool,
    CancellationToken,
    is_cancelled,
)
from transactional_events.infra.logging.context import get_log_context, log_context


class _Reports:
    def __init__(self):
        self.items = []
        self._lock = threading.Lock()

    def __call__(self, status, exc):
        with self._lock:
            self.items.append((status, exc))


@pytest.fixture
def pool():
    worker_pool = AsyncListenerPool(max_workers=2, thread_name_prefix="test-worker")
    yield worker_pool
    worker_pool.shutdown()


@pytest.fixture
def event():
    return Event(type_id="user.created")


@pytest.mark.unit
class TestCancellation:
    """Tests for cancellation handles."""

    def test_token(self):
        token = CancellationToken()
        assert not token.is_cancelled()

        token.cancel()

        assert token.is_cancelled()

    def test_is_cancelled_accepts_threading_event(self):
        flag = threading.Event()
        assert not is_cancelled(flag)

        flag.set()

        assert is_cancelled(flag)

    def test_none_and_unknown_objects_never_cancel(self):
        assert not is_cancelled(None)
        assert not is_cancelled(object())


@pytest.mark.unit
class TestAsyncListenerPool:
    """Tests for background listener execution."""

    def test_no_threads_until_first_submit(self):
        pool = AsyncListenerPool()

        assert pool._executor is None
        pool.shutdown()

    def test_plain_handler_runs_on_worker_thread(self, pool, event):
        reports = _Reports()
        threads = []

        pool.submit(lambda e: threads.append(threading.current_thread().name), event, reports)

        assert pool.wait(timeout=5)
        assert threads[0].startswith("test-worker")
        assert reports.items == [("success", None)]
        assert pool.pending == 0

    def test_failure_reported(self, pool, event):
        reports = _Reports()
        error = ValueError("boom")

        def handler(e):
            raise error

        pool.submit(handler, event, reports)

        assert pool.wait(timeout=5)
        assert reports.items == [("failed", error)]

    def test_cancelled_listener_skipped(self, pool, event):
        reports = _Reports()
        calls = []
        token = CancellationToken()
        token.cancel()

        pool.submit(calls.append, event, reports, cancellation=token)

        assert pool.wait(timeout=5)
        assert calls == []
        assert reports.items == [("skipped", None)]

    def test_coroutine_without_loop_runs_in_worker(self, pool, event):
        reports = _Reports()
        received = []

        async def handler(e):
            await asyncio.sleep(0)
            received.append(e)

        pool.submit(handler, event, reports)

        assert pool.wait(timeout=5)
        assert received == [event]
        assert reports.items == [("success", None)]

    async def test_coroutine_on_running_loop_becomes_task(self, pool, event):
        reports = _Reports()
        loop_threads = []

        async def handler(e):
            loop_threads.append(threading.current_thread())

        pool.submit(handler, event, reports)
        await pool.join()

        assert loop_threads == [threading.current_thread()]
        assert reports.items == [("success", None)]

    def test_log_context_copied_into_worker(self, pool, event):
        reports = _Reports()
        seen = []

        with log_context(transaction_id="tx-42"):
            pool.submit(lambda e: seen.append(get_log_context()), event, reports)

        assert pool.wait(timeout=5)
        assert seen == [{"transaction_id": "tx-42"}]

    def test_submit_after_shutdown_rejected(self, event):
        pool = AsyncListenerPool()
        pool.shutdown()

        with pytest.raises(RuntimeError):
            pool.submit(lambda e: None, event, _Reports())

    def test_shutdown_waits_for_running_listeners(self, event):
        pool = AsyncListenerPool(max_workers=1)
        started = threading.Event()
        finished = []

        def handler(e):
            started.set()
            finished.append(e)

        pool.submit(handler, event, _Reports())
        assert started.wait(timeout=5)
        pool.shutdown(wait=True)

        assert finished == [event]
