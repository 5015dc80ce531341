"""Logging infrastructure.

Provides structured logging with:
- JSONL format for log aggregation
- Automatic context injection (transaction_id, event_type, ...)
- QueueHandler + QueueListener for non-blocking I/O
- OpenTelemetry trace correlation

Basic usage:
    from transactional_events.infra.logging import log_context, setup_logging
    import logging

    setup_logging()
    logger = logging.getLogger(__name__)

    with log_context(transaction_id="3f2a..."):
        logger.info("Dispatching")  # Includes transaction_id
"""

from transactional_events.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from transactional_events.infra.logging.context import (
    ContextBoundLogger,
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    get_logger,
    log_context,
    remove_from_log_context,
    set_log_context,
)
from transactional_events.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextBoundLogger",
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_log_context",
    "get_logger",
    "log_context",
    "remove_from_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
