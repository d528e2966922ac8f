"""OpenTelemetry tracing for the Azure Backup Operator.

Tracing is configured from the standard ``OTEL_*`` environment variables:

- ``OTEL_TRACES_ENABLED``: set to ``false`` to disable tracing (default: true)
- ``OTEL_SERVICE_NAME``: service name (default: azure-backup-operator)
- ``OTEL_SERVICE_VERSION``: service version reported on spans (default: unknown)
- ``OTEL_EXPORTER_OTLP_ENDPOINT``: OTLP gRPC endpoint (default: http://localhost:4317)

Until :func:`initialize_tracing` succeeds, :func:`trace_span` is a no-op.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from .constants import CONTROLLER_NAME

logger = logging.getLogger(__name__)

_tracer: Tracer | None = None


def _build_provider(service_name: str) -> TracerProvider:
    resource = Resource.create({
        "service.name": service_name,
        "service.version": os.getenv("OTEL_SERVICE_VERSION", "unknown"),
    })
    exporter = OTLPSpanExporter(endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"))
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def initialize_tracing(service_name: str = CONTROLLER_NAME) -> None:
    """Install the global tracer provider and the operator's tracer."""
    global _tracer

    if os.getenv("OTEL_TRACES_ENABLED", "true").lower() == "false":
        logger.info("Tracing disabled via OTEL_TRACES_ENABLED")
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", service_name)
    try:
        trace.set_tracer_provider(_build_provider(service_name))
    except Exception as e:
        # The operator runs without traces rather than failing startup
        logger.warning(f"Failed to initialize tracing: {e}")
        return
    _tracer = trace.get_tracer(service_name)


def get_tracer() -> Tracer | None:
    return _tracer


@contextmanager
def trace_span(
    name: str,
    kind: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span | None]:
    """Run the enclosed block in a span named ``name``.

    An exception leaving the block is recorded on the span, which is marked
    as failed, and then re-raised.

    Args:
        name: Name of the span
        kind: Resource kind, stored as ``resource.kind``
        attributes: Additional span attributes

    Yields:
        The span, or None while tracing is not initialized
    """
    tracer = get_tracer()
    if tracer is None:
        yield None
        return

    span_attributes = dict(attributes or {})
    if kind:
        span_attributes["resource.kind"] = kind

    with tracer.start_as_current_span(name, attributes=span_attributes, record_exception=False) as span:
        try:
            yield span
        except Exception as e:
            if span.is_recording():
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def add_span_attribute(key: str, value: Any) -> None:
    """Attach an attribute to the current span; ignored when nothing is recording."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)
