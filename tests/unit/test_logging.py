"""Tests for structured logging."""
import io
import json
import logging

import pytest

from connectorflow.observability import (
    TraceContextFilter,
    TraceJsonFormatter,
    TraceLoggerAdapter,
    get_logger,
    setup_logging,
    with_trace_context,
)


@pytest.fixture
def restore_root_logger():
    """Put back the root handlers and level that setup_logging replaces."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def format_record(formatter, **extra):
    record = logging.LogRecord("connectorflow.test", logging.INFO, __file__, 1, "node finished", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    TraceContextFilter().filter(record)
    return formatter.format(record)


class TestJsonFormatter:

    def test_fields(self):
        formatter = TraceJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

        data = json.loads(format_record(formatter, run_id="r1", node_id="n1"))

        assert data["message"] == "node finished"
        assert data["level"] == "INFO"
        assert data["logger"] == "connectorflow.test"
        assert data["run_id"] == "r1"
        assert data["node_id"] == "n1"
        assert "timestamp" in data

    def test_empty_trace_fields_dropped(self):
        formatter = TraceJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

        data = json.loads(format_record(formatter))

        for field in ("run_id", "workflow_id", "node_id", "tenant_id"):
            assert field not in data


class TestSetupLogging:

    def test_json_output(self, restore_root_logger, monkeypatch):
        stream = io.StringIO()
        monkeypatch.setattr("sys.stderr", stream)

        setup_logging(level="debug", json_output=True)
        logging.getLogger("connectorflow.test").debug("hello", extra=with_trace_context(run_id="r9"))

        line = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert line["message"] == "hello"
        assert line["run_id"] == "r9"
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1

    def test_plain_output_from_settings(self, restore_root_logger, monkeypatch):
        stream = io.StringIO()
        monkeypatch.setattr("sys.stderr", stream)

        # conftest sets CONNECTORFLOW_LOG_JSON=false
        setup_logging()
        logging.getLogger("connectorflow.test").warning("plain line")

        assert "WARNING" in stream.getvalue()
        assert "connectorflow.test: plain line" in stream.getvalue()


class TestTraceContext:

    def test_with_trace_context_skips_empty(self):
        assert with_trace_context(run_id="r1", node_id=None, attempt=2) == {"run_id": "r1", "attempt": 2}

    def test_get_logger(self):
        adapter = get_logger("connectorflow.test")
        assert isinstance(adapter, TraceLoggerAdapter)
        assert adapter.logger.name == "connectorflow.test"
        assert adapter.extra == {}

    def test_bound_fields_merge_with_call_extra(self, caplog):
        log = get_logger("connectorflow.test", run_id="r1", node_id="n1")

        with caplog.at_level(logging.INFO, logger="connectorflow.test"):
            log.info("attempt", extra={"attempt": 2, "node_id": "n2"})

        record = caplog.records[-1]
        assert record.run_id == "r1"
        assert record.node_id == "n2"
        assert record.attempt == 2
