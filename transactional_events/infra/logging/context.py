"""Context management for structured logging.

Provides automatic context injection into log records using contextvars,
so fields such as ``transaction_id`` or ``event_type`` appear in every log
line emitted while a unit of work is being dispatched, without passing them
to each logging call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Each thread / async task sees its own copy
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for the current async task/thread.

    Args:
        **kwargs: Key-value pairs to add to logging context.

    Example:
        ```python
        set_log_context(transaction_id="3f2a...", request_id="abc-123")
        logger.info("Dispatching")  # Includes transaction_id and request_id
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current async task/thread."""
    _log_context.set({})


def remove_from_log_context(*keys: str) -> None:
    """Remove specific keys from logging context.

    Args:
        *keys: Keys to remove from context.
    """
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind context fields for the duration of a ``with`` block.

    The previous context is restored on exit, including when the block
    raises.

    Example:
        ```python
        with log_context(transaction_id=tx.id, phase="after_commit"):
            logger.info("Running listeners")
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    token = _log_context.set(current)
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvars log context into records.

    Attached to the root QueueHandler so records from every logger carry it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject context into log record.

        Args:
            record: The log record to enhance with context.

        Returns:
            True (always allow the record to be logged).
        """
        context = _log_context.get()

        for key, value in context.items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)

        return True


class ContextBoundLogger(logging.LoggerAdapter):
    """Logger adapter that binds permanent context to a logger instance.

    Example:
        ```python
        tx_logger = ContextBoundLogger(logger, transaction_id=tx.id)
        tx_logger.info("Enqueued event")
        tx_logger.bind(event_type="user.created").debug("Matched 2 listeners")
        ```
    """

    def __init__(self, logger: logging.Logger, **context: Any) -> None:
        super().__init__(logger, context)

    def bind(self, **context: Any) -> ContextBoundLogger:
        """Create new logger with additional bound context."""
        merged = {**self.extra, **context}
        return ContextBoundLogger(self.logger, **merged)

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Merge bound context with any extra fields passed to the log call."""
        extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **extra}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextBoundLogger:
    """Get logger with bound context.

    Args:
        name: Logger name.
        **context: Context to add to all log messages.

    Returns:
        Logger adapter with context.
    """
    return ContextBoundLogger(logging.getLogger(name), **context)
