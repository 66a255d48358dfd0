"""Tracing helpers built on the OpenTelemetry API."""

import asyncio
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, Tracer

P = ParamSpec("P")
R = TypeVar("R")

AttributeValue = str | int | float | bool


def get_tracer(name: str) -> Tracer:
    """Get a tracer for the given module name.

    Args:
        name: Module name, typically __name__.

    Returns:
        A Tracer instance for creating spans.
    """
    return trace.get_tracer(name)


def add_span_attributes(attributes: dict[str, AttributeValue]) -> None:
    """Add attributes to the current span if it is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        for key, value in attributes.items():
            span.set_attribute(key, value)


def current_trace_ids() -> tuple[str, str] | None:
    """Return (trace_id, span_id) as hex strings, or None outside a span."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


def traced(
    span_name: str,
    *,
    attributes: dict[str, AttributeValue] | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Wrap a sync or async function in a span.

    The span records the exception and an ERROR status when the wrapped
    function raises; the exception is re-raised unchanged.

    Args:
        span_name: Name for the span.
        attributes: Static attributes to add to the span.

    Returns:
        A decorator.
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        tracer = get_tracer(fn.__module__)

        def _start(span: trace.Span) -> None:
            for key, value in (attributes or {}).items():
                span.set_attribute(key, value)

        def _fail(span: trace.Span, exc: Exception) -> None:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))

        if asyncio.iscoroutinefunction(fn):

            @wraps(fn)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                with tracer.start_as_current_span(span_name) as span:
                    _start(span)
                    try:
                        return await fn(*args, **kwargs)  # type: ignore[misc]
                    except Exception as e:
                        _fail(span, e)
                        raise

            return async_wrapper  # type: ignore[return-value]

        @wraps(fn)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with tracer.start_as_current_span(span_name) as span:
                _start(span)
                try:
                    return fn(*args, **kwargs)
                except Exception as e:
                    _fail(span, e)
                    raise

        return sync_wrapper

    return decorator
