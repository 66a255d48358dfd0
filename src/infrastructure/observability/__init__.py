"""Observability: structlog configuration and OpenTelemetry tracing."""

from src.infrastructure.observability.setup import (
    add_trace_context,
    configure_logging,
    init_observability,
    shutdown_observability,
)
from src.infrastructure.observability.tracing import (
    add_span_attributes,
    current_trace_ids,
    get_tracer,
    traced,
)

__all__ = [
    "add_span_attributes",
    "add_trace_context",
    "configure_logging",
    "current_trace_ids",
    "get_tracer",
    "init_observability",
    "shutdown_observability",
    "traced",
]
