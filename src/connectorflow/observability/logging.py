"""
Structured logging for resolution and workflow runs.

Log lines are JSON by default (python-json-logger). Every record carries the
run trace fields below when they are known; records outside a run simply
omit them.
"""
import logging
import sys
from typing import Any, MutableMapping

from pythonjsonlogger import jsonlogger

from connectorflow.config import get_settings

TRACE_FIELDS = ("run_id", "workflow_id", "node_id", "tenant_id")

JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

QUIET_LOGGERS = ("urllib3", "requests")


class TraceContextFilter(logging.Filter):
    """Give every record the trace attributes, None when unset."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in TRACE_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


class TraceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with ``timestamp``, ``level``, ``logger`` and set trace fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.pop("name", None)
        log_record.update(
            timestamp=log_record.get("timestamp") or self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
        )
        for field in TRACE_FIELDS:
            if not log_record.get(field):
                log_record.pop(field, None)


class TraceLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose bound trace fields merge with per-call ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Replace the root handlers with one stderr handler.

    Args:
        level: Log level, defaults to the ``log_level`` setting
        json_output: JSON lines or plain text, defaults to the ``log_json`` setting
    """
    settings = get_settings()
    level = (level or settings.log_level).upper()
    if json_output is None:
        json_output = settings.log_json

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(TraceContextFilter())
    if json_output:
        handler.setFormatter(TraceJsonFormatter(JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def with_trace_context(
    run_id: str | None = None,
    workflow_id: str | None = None,
    node_id: str | None = None,
    tenant_id: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """``extra`` dict for a log call; empty trace values are left out."""
    trace = {"run_id": run_id, "workflow_id": workflow_id, "node_id": node_id, "tenant_id": tenant_id}
    return {**kwargs, **{key: value for key, value in trace.items() if value}}


def get_logger(name: str, **trace: Any) -> TraceLoggerAdapter:
    """
    Logger bound to trace fields.

    Usage:
        log = get_logger("connector.core.httpRequest", run_id=run.id, node_id=node.id)
        log.info("sent", extra={"attempt": 2})
    """
    return TraceLoggerAdapter(logging.getLogger(name), with_trace_context(**trace))


__all__ = [
    "TRACE_FIELDS",
    "TraceContextFilter",
    "TraceJsonFormatter",
    "TraceLoggerAdapter",
    "setup_logging",
    "with_trace_context",
    "get_logger",
]
