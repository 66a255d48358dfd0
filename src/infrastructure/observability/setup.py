"""Process-wide logging and tracing configuration."""

import logging
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from src.infrastructure.observability.tracing import current_trace_ids

if TYPE_CHECKING:
    from fastapi import FastAPI

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor stamping trace_id and span_id inside a span."""
    ids = current_trace_ids()
    if ids is not None:
        event_dict["trace_id"], event_dict["span_id"] = ids
    return event_dict


def _event_processors() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(*, debug: bool = False) -> None:
    """Route structlog through a single stdlib handler.

    Events render as JSON lines, or coloured console output with ``debug``.
    Library loggers (uvicorn, httpx, pypdf) share the same handler.
    """
    structlog.configure(
        processors=[
            *_event_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler()
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def _build_tracer_provider(
    service_name: str,
    service_version: str,
    otlp_endpoint: str | None,
    console_export: bool,
) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {SERVICE_NAME: service_name, SERVICE_VERSION: service_version}
        )
    )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=f"{otlp_endpoint.rstrip('/')}/v1/traces")
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def init_observability(
    service_name: str,
    service_version: str,
    *,
    otlp_endpoint: str | None = None,
    console_export: bool = False,
    enabled: bool = True,
    debug: bool = False,
    app: "FastAPI | None" = None,
) -> None:
    """Configure logging and, when enabled, install a tracer provider.

    Safe to call more than once; only the first call takes effect until
    shutdown_observability() runs.

    Args:
        service_name: ``service.name`` resource attribute.
        service_version: ``service.version`` resource attribute.
        otlp_endpoint: OTLP/HTTP collector base URL, e.g. http://localhost:4318.
        console_export: Also print finished spans to stdout.
        enabled: Without tracing no provider is installed, so spans stay
            non-recording; logging is configured either way.
        debug: Human-readable logs at DEBUG level.
        app: FastAPI app whose requests should get server spans.
    """
    global _tracer_provider, _initialized

    if _initialized:
        return
    _initialized = True

    configure_logging(debug=debug)
    if not enabled:
        return

    _tracer_provider = _build_tracer_provider(
        service_name, service_version, otlp_endpoint, console_export
    )
    trace.set_tracer_provider(_tracer_provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)
    # Outbound embedding and chat calls go through httpx
    HTTPXClientInstrumentor().instrument()


def shutdown_observability() -> None:
    """Flush pending spans and allow re-initialization."""
    global _tracer_provider, _initialized

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        _tracer_provider = None
    _initialized = False
