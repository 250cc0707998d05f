"""
Unit tests for metrics collection and span helpers.
"""

from unittest.mock import MagicMock

import pytest

from keyword_gateway.observability.metrics import (
    MetricsCollector,
    get_metrics_collector,
    record_cache_event,
    record_quota_rejected,
)
from keyword_gateway.observability.tracing import add_span_attributes, get_tracer, set_span_error, trace_span


@pytest.fixture
def collector():
    collector = get_metrics_collector()
    collector.reset_metrics()
    yield collector
    collector.reset_metrics()


def test_counters_are_keyed_by_sorted_labels():
    metrics = MetricsCollector()

    metrics.increment_counter("calls", {"path": "a", "outcome": "ok"})
    metrics.increment_counter("calls", {"outcome": "ok", "path": "a"}, value=2)

    assert metrics.get_counter("calls", {"path": "a", "outcome": "ok"}) == 3
    assert metrics.get_counter("calls", {"path": "b"}) == 0


def test_histogram_stats():
    metrics = MetricsCollector()
    for value in range(1, 101):
        metrics.observe_histogram("latency", value=value)

    stats = metrics.get_histogram_stats("latency")

    assert stats["count"] == 100
    assert stats["min"] == 1
    assert stats["max"] == 100
    assert stats["p50"] == 51


def test_get_all_metrics_snapshot():
    metrics = MetricsCollector()
    metrics.set_gauge("tokens", {"identifier": "provider:a"}, 7)
    metrics.observe_histogram("latency", value=12.5)

    snapshot = metrics.get_all_metrics()

    assert snapshot["gauges"] == {"tokens:identifier=provider:a": 7}
    assert snapshot["histograms"]["latency"]["avg"] == 12.5
    assert snapshot["metadata"]["uptime_seconds"] >= 0


def test_convenience_recorders(collector):
    record_cache_event("hit")
    record_cache_event("hit")
    record_quota_rejected("queries_per_day", "tenant-1")

    assert collector.get_counter("cache_events_total", {"event": "hit"}) == 2
    assert collector.get_counter(
        "quota_rejections_total", {"limit_type": "queries_per_day", "tenant_id": "tenant-1"}
    ) == 1


def test_trace_span_reraises_and_marks_error():
    tracer = get_tracer("test")

    with pytest.raises(RuntimeError):
        with trace_span(tracer, "failing", {"key": "value"}):
            raise RuntimeError("boom")


def test_span_helpers_ignore_non_recording_spans():
    span = MagicMock()
    span.is_recording.return_value = False

    add_span_attributes(span, {"a": 1})
    set_span_error(span, RuntimeError("x"))

    span.set_attribute.assert_not_called()
    span.set_status.assert_not_called()


def test_add_span_attributes_skips_none():
    span = MagicMock()
    span.is_recording.return_value = True

    add_span_attributes(span, {"a": 1, "b": None})

    span.set_attribute.assert_called_once_with("a", 1)
