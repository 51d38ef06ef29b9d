"""OpenTelemetry tracing for orchestrator commands.

Every command runs inside a span named "orchestrator.<operation>" carrying
the instance id. Commands that fail with a result (rather than an
exception) mark their span as errored through mark_outcome, so failed
starts and conflicts show up in the trace backend.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)

SERVICE_NAME = "db_orchestrator"

_provider: TracerProvider | None = None


def setup_tracing(
    service_name: str = SERVICE_NAME,
    otlp_endpoint: str | None = None,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install a tracer provider for the orchestrator.

    Without an endpoint or console export, spans are created but never
    exported.

    Args:
        service_name: Service name reported to the collector
        otlp_endpoint: OTLP gRPC collector endpoint (e.g., "http://localhost:4317")
        console_export: Also print finished spans to stdout

    Returns:
        Tracer for orchestrator spans
    """
    global _provider

    from db_orchestrator import __version__

    resource = Resource.create({"service.name": service_name, "service.version": __version__})
    _provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        _provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info("Exporting traces to %s", otlp_endpoint)
    if console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    return get_tracer()


def shutdown_tracing() -> None:
    """Flush pending spans and stop the exporters."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


def get_tracer() -> trace.Tracer:
    """Tracer from the current global provider."""
    return trace.get_tracer(SERVICE_NAME)


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """
    Run a block inside a span.

    Attributes whose value is None are skipped. Exceptions are recorded on
    the span and re-raised.

    Args:
        name: Span name, e.g. "orchestrator.start"
        attributes: Span attributes such as the instance id or port

    Yields:
        The active span
    """
    with get_tracer().start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def mark_outcome(span: trace.Span, success: bool, message: str = "") -> None:
    """Record the outcome of a command that reports failure as a result."""
    span.set_attribute("orchestrator.success", success)
    if not success:
        span.set_status(Status(StatusCode.ERROR, message))
