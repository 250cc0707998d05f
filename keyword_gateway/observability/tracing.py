"""
Tracing Utility

OpenTelemetry tracing for gateway operations. Spans go to the globally
installed tracer provider; until configure_tracing() installs the SDK
provider the API hands out no-op tracers.
"""

import os
import logging
from typing import Optional
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

# Global tracer provider
_tracer_provider: Optional[TracerProvider] = None
_tracing_configured = False


def configure_tracing():
    """
    Configure OpenTelemetry tracing.

    Environment Variables:
    - TRACING_ENABLED: Enable/disable tracing (default: true)
    - TRACING_EXPORTER: Exporter type, console|none (default: none)
    - TRACING_SERVICE_NAME: Service name (default: keyword-gateway)

    Safe Failure: If configuration fails, tracing is disabled but the gateway continues.
    """
    global _tracer_provider, _tracing_configured

    if _tracing_configured:
        return

    try:
        tracing_enabled = os.getenv("TRACING_ENABLED", "true").lower() == "true"

        if not tracing_enabled:
            logger.info("Tracing is disabled via TRACING_ENABLED=false")
            _tracing_configured = True
            return

        service_name = os.getenv("TRACING_SERVICE_NAME", "keyword-gateway")
        exporter_type = os.getenv("TRACING_EXPORTER", "none").lower()

        if exporter_type == "console":
            _tracer_provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))
            _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            trace.set_tracer_provider(_tracer_provider)
            logger.info("Console tracing configured")
        elif exporter_type == "none":
            logger.info("Tracing exporter set to 'none' - no spans will be exported")
        else:
            logger.warning(f"Unknown exporter type: {exporter_type}. Tracing disabled.")

        _tracing_configured = True

    except Exception as e:
        logger.error(f"Failed to configure tracing: {e}. Tracing will be disabled.")
        _tracer_provider = None
        _tracing_configured = True


def get_tracer(service_name: str) -> Tracer:
    """
    Get a tracer for the given component name.

    Returns:
        Tracer instance (a no-op tracer when no SDK provider is installed)
    """
    if not _tracing_configured:
        configure_tracing()

    return trace.get_tracer(service_name)


@contextmanager
def trace_span(tracer: Tracer, span_name: str, attributes: Optional[dict] = None):
    """
    Context manager for a traced span that records exceptions raised inside it.

    Example:
        with trace_span(tracer, "provider.call", {"provider.path": path}) as span:
            span.set_attribute("provider.results", len(results))
    """
    with tracer.start_as_current_span(span_name, record_exception=False, set_status_on_exception=False) as span:
        if attributes:
            add_span_attributes(span, attributes)
        try:
            yield span
        except Exception as e:
            set_span_error(span, e)
            raise


def set_span_error(span, error: Exception):
    """Mark a span as errored with exception details."""
    if span is None or not span.is_recording():
        return
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


def add_span_attributes(span, attributes: dict):
    """Add attributes to a span, skipping None values."""
    if span is None or not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)
