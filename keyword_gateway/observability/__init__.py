"""Tracing and metrics for the provider gateway."""

from .tracing import configure_tracing, get_tracer, trace_span
from .metrics import MetricsCollector, get_metrics_collector, get_metrics_summary

__all__ = [
    "configure_tracing",
    "get_tracer",
    "trace_span",
    "MetricsCollector",
    "get_metrics_collector",
    "get_metrics_summary",
]
