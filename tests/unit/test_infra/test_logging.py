"""Unit tests for logging context, formatter and configuration."""
from __future__ import annotations

import json
import logging

import pytest

from transactional_events.core.settings import LoggingSettings
from transactional_events.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    configure_logging,
    get_log_context,
    get_logger,
    log_context,
    remove_from_log_context,
    set_log_context,
    setup_logging,
    shutdown,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord(
        name="transactional_events.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context():
    clear_log_context()
    yield
    clear_log_context()


# ──────────────────────────────────────────────────────────────
# Context
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestLogContext:
    """Tests for contextvars-based log context."""

    def test_set_and_remove(self):
        set_log_context(request_id="abc", transaction_id="tx-1")
        remove_from_log_context("request_id")

        assert get_log_context() == {"transaction_id": "tx-1"}

    def test_log_context_restores_previous(self):
        set_log_context(request_id="abc")

        with log_context(transaction_id="tx-1", phase="after_commit"):
            assert get_log_context() == {
                "request_id": "abc",
                "transaction_id": "tx-1",
                "phase": "after_commit",
            }

        assert get_log_context() == {"request_id": "abc"}

    def test_log_context_restores_on_error(self):
        with pytest.raises(ValueError):
            with log_context(transaction_id="tx-1"):
                raise ValueError

        assert get_log_context() == {}

    def test_filter_injects_without_overwriting(self):
        record = _record(phase="explicit")

        with log_context(transaction_id="tx-1", phase="before_commit"):
            assert ContextInjectingFilter().filter(record) is True

        assert record.transaction_id == "tx-1"
        assert record.phase == "explicit"

    def test_bound_logger_merges_extra(self, caplog):
        bound = get_logger("transactional_events.test", transaction_id="tx-1")

        with caplog.at_level(logging.INFO, logger="transactional_events.test"):
            bound.bind(event_type="user.created").info("Matched", extra={"listeners": 2})

        (record,) = caplog.records
        assert record.transaction_id == "tx-1"
        assert record.event_type == "user.created"
        assert record.listeners == 2


# ──────────────────────────────────────────────────────────────
# JSONFormatter
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestJSONFormatter:
    """Tests for JSON Lines output."""

    def test_basic_fields(self):
        output = json.loads(JSONFormatter().format(_record("Phase %s", transaction_id="tx-1")))

        assert output["level"] == "INFO"
        assert output["logger"] == "transactional_events.test"
        assert output["message"] == "Phase %s"
        assert output["timestamp"].endswith("Z")
        assert output["transaction_id"] == "tx-1"
        assert "trace_id" not in output

    def test_static_fields_and_thread_info(self):
        formatter = JSONFormatter(static={"service": "orders"}, include_thread_info=True)

        output = json.loads(formatter.format(_record()))

        assert output["service"] == "orders"
        assert "thread_id" in output
        assert "thread_name" in output

    def test_exception_on_single_line(self):
        try:
            raise RuntimeError("listener failed")
        except RuntimeError:
            import sys

            record = _record()
            record.exc_info = sys.exc_info()

        line = JSONFormatter().format(record)

        assert "\n" not in line
        assert "RuntimeError: listener failed" in json.loads(line)["exception"]

    def test_non_serializable_values_stringified(self):
        output = json.loads(JSONFormatter().format(_record(payload=object())))

        assert output["payload"].startswith("<object object")


# ──────────────────────────────────────────────────────────────
# configure_logging / setup_logging
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for the queue-based logging setup."""

    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        shutdown()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_file_output_includes_context(self, tmp_path):
        path = tmp_path / "logs" / "events.jsonl"
        configure_logging(
            log_level="DEBUG",
            file_path=path,
            console_enabled=False,
            service_name="orders",
            capture_warnings=False,
        )

        with log_context(transaction_id="tx-7"):
            logging.getLogger("transactional_events.core.events.bus").info(
                "Event enqueued", extra={"event_type": "user.created"}
            )
        shutdown()

        (line,) = path.read_text().splitlines()
        output = json.loads(line)
        assert output["message"] == "Event enqueued"
        assert output["transaction_id"] == "tx-7"
        assert output["event_type"] == "user.created"
        assert output["service"] == "orders"

    def test_reconfigure_does_not_duplicate_handlers(self, tmp_path):
        configure_logging(console_enabled=False, capture_warnings=False)
        configure_logging(console_enabled=False, capture_warnings=False)

        queue_handlers = [
            h for h in logging.getLogger().handlers if type(h).__name__ == "QueueHandler"
        ]
        assert len(queue_handlers) == 1

    def test_setup_logging_runs_once(self, tmp_path):
        path = tmp_path / "events.jsonl"
        settings = LoggingSettings(
            file_enabled=True, file_path=path, console_enabled=False, capture_warnings=False
        )

        setup_logging(settings)
        setup_logging(LoggingSettings(level="ERROR"))

        assert logging.getLogger().level == logging.INFO
        assert path.exists()
