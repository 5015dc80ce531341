"""Background execution for ASYNC listeners.

ASYNC listeners never block the publisher or the phase scheduler:

- plain callables run on a ThreadPoolExecutor;
- coroutine handlers run as tasks on the publisher's event loop when the
  publisher is running inside one, otherwise with ``asyncio.run`` on a
  worker thread.

The logging context of the publisher is copied into the worker so log lines
from ASYNC listeners still carry the transaction id.

Execution is fire-and-forget. A caller-supplied cancellation handle is
checked just before a queued listener starts; a cancelled listener is
skipped, a running one is never interrupted.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import TYPE_CHECKING, Any, Literal

from transactional_events.core.events.registry import is_coroutine_handler

if TYPE_CHECKING:
    from transactional_events.core.events.base import Event
    from transactional_events.core.events.registry import ListenerHandler

logger = logging.getLogger(__name__)

AsyncStatus = Literal["success", "failed", "skipped"]
Reporter = Callable[[AsyncStatus, BaseException | None], None]


class CancellationToken:
    """Minimal cancellation handle for ASYNC listener work.

    Any object with an ``is_cancelled()`` or ``is_set()`` method (such as
    ``threading.Event``) is accepted wherever a token is.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


def is_cancelled(token: Any) -> bool:
    """Return True when ``token`` signals cancellation. ``None`` never does."""
    if token is None:
        return False
    check = getattr(token, "is_cancelled", None) or getattr(token, "is_set", None)
    if check is None:
        return False
    return bool(check())


class AsyncListenerPool:
    """Runs ASYNC listeners in the background.

    The thread pool is created lazily on first use so that constructing a bus
    never spawns threads.
    """

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "event-listener") -> None:
        self._max_workers = max_workers
        self._thread_name_prefix = thread_name_prefix
        self._executor: ThreadPoolExecutor | None = None
        self._futures: set[Future[None]] = set()
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of submitted listeners that have not finished yet."""
        with self._lock:
            return len(self._futures) + len(self._tasks)

    def submit(
        self,
        handler: ListenerHandler,
        event: Event,
        report: Reporter,
        *,
        cancellation: Any = None,
    ) -> None:
        """Schedule ``handler(event)`` for background execution.

        Args:
            handler: Listener callable or coroutine function.
            event: Event to deliver.
            report: Called once with the final status and the error, if any.
            cancellation: Optional cancellation handle checked before start.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            raise RuntimeError("AsyncListenerPool has been shut down")

        if is_coroutine_handler(handler):
            loop = _running_loop()
            if loop is not None:
                task = loop.create_task(self._run_coroutine(handler, event, report, cancellation))
                with self._lock:
                    self._tasks.add(task)
                task.add_done_callback(self._discard_task)
                return

        ctx = contextvars.copy_context()
        future = self._get_executor().submit(
            ctx.run, self._run_in_worker, handler, event, report, cancellation
        )
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._discard_future)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every thread-pool listener submitted so far has finished.

        Returns:
            True if all finished within ``timeout``.
        """
        with self._lock:
            futures = list(self._futures)
        if not futures:
            return True
        _, not_done = wait_futures(futures, timeout=timeout)
        return not not_done

    async def join(self) -> None:
        """Await every event-loop task submitted so far."""
        with self._lock:
            tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the worker threads.

        Args:
            wait: Wait for running listeners; when False, queued ones are cancelled.
        """
        self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)
            self._executor = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix=self._thread_name_prefix,
            )
        return self._executor

    def _discard_future(self, future: Future[None]) -> None:
        with self._lock:
            self._futures.discard(future)

    def _discard_task(self, task: asyncio.Task[None]) -> None:
        with self._lock:
            self._tasks.discard(task)

    @staticmethod
    def _run_in_worker(
        handler: ListenerHandler,
        event: Event,
        report: Reporter,
        cancellation: Any,
    ) -> None:
        if is_cancelled(cancellation):
            report("skipped", None)
            return
        try:
            if is_coroutine_handler(handler):
                asyncio.run(handler(event))
            else:
                handler(event)
        except Exception as exc:
            report("failed", exc)
        else:
            report("success", None)

    @staticmethod
    async def _run_coroutine(
        handler: ListenerHandler,
        event: Event,
        report: Reporter,
        cancellation: Any,
    ) -> None:
        if is_cancelled(cancellation):
            report("skipped", None)
            return
        try:
            await handler(event)
        except Exception as exc:
            report("failed", exc)
        else:
            report("success", None)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


__all__ = [
    "AsyncListenerPool",
    "AsyncStatus",
    "CancellationToken",
    "Reporter",
    "is_cancelled",
]
