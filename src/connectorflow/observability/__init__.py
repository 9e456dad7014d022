"""Observability package."""
from connectorflow.observability.logging import (
    TraceContextFilter,
    TraceJsonFormatter,
    TraceLoggerAdapter,
    get_logger,
    setup_logging,
    with_trace_context,
)

__all__ = [
    "TraceContextFilter",
    "TraceJsonFormatter",
    "TraceLoggerAdapter",
    "get_logger",
    "setup_logging",
    "with_trace_context",
]
