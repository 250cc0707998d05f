"""
Metrics Collection for the Provider Gateway

Tracks counters, gauges and latency histograms for provider calls, retries,
throttling, cache effectiveness and quota rejections.
In-memory implementation with thread-safe updates.
"""

import logging
import threading
from typing import Dict, Any, List, Optional
from collections import defaultdict
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

HISTOGRAM_MAX_OBSERVATIONS = 1000


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Tracks:
    - Provider calls, retries and pages fetched
    - Rate limit waits
    - Cache hits, misses and infrastructure errors
    - Quota rejections
    - Provider call latency
    """

    def __init__(self):
        self.lock = threading.Lock()

        # Counters
        self.counters = defaultdict(int)

        # Gauges (latest value)
        self.gauges = {}

        # Histograms (for latency tracking)
        self.histograms = defaultdict(list)

        self.start_time = datetime.now(timezone.utc)

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None, value: int = 1):
        """
        Increment a counter metric.

        Args:
            name: Metric name
            labels: Optional labels dict
            value: Increment value (default: 1)
        """
        key = self._make_key(name, labels)

        with self.lock:
            self.counters[key] += value

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        """Set a gauge metric value."""
        key = self._make_key(name, labels)

        with self.lock:
            self.gauges[key] = value

    def observe_histogram(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        """Add an observation to a histogram."""
        key = self._make_key(name, labels)

        with self.lock:
            self.histograms[key].append(value)

            # Keep only the most recent observations to prevent memory bloat
            if len(self.histograms[key]) > HISTOGRAM_MAX_OBSERVATIONS:
                self.histograms[key] = self.histograms[key][-HISTOGRAM_MAX_OBSERVATIONS:]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        key = self._make_key(name, labels)

        with self.lock:
            return self.counters.get(key, 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        key = self._make_key(name, labels)

        with self.lock:
            return self.gauges.get(key)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics (min, max, avg, p50, p95, p99)."""
        key = self._make_key(name, labels)

        with self.lock:
            return self._stats(self.histograms.get(key, []))

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all metrics as a dict."""
        with self.lock:
            return {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "histograms": {key: self._stats(values) for key, values in self.histograms.items()},
                "metadata": {
                    "start_time": self.start_time.isoformat(),
                    "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
                },
            }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        with self.lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.start_time = datetime.now(timezone.utc)

    @staticmethod
    def _stats(values: List[float]) -> Dict[str, float]:
        if not values:
            return {}

        sorted_values = sorted(values)
        count = len(sorted_values)

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p50": sorted_values[int(count * 0.5)],
            "p95": sorted_values[min(count - 1, int(count * 0.95))],
            "p99": sorted_values[min(count - 1, int(count * 0.99))],
        }

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key from metric name and labels."""
        if not labels:
            return name

        # Sort labels for consistent keys
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}:{label_str}"


# Global metrics collector
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics_collector

    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()

    return _metrics_collector


# Convenience functions for common metrics

def record_provider_call(path: str, outcome: str):
    """Record one provider round trip and its outcome (ok|transient|permanent)."""
    get_metrics_collector().increment_counter("provider_calls_total", {"path": path, "outcome": outcome})


def record_provider_retry(path: str):
    get_metrics_collector().increment_counter("provider_retries_total", {"path": path})


def record_pages_fetched(path: str, pages: int):
    get_metrics_collector().increment_counter("provider_pages_total", {"path": path}, pages)


def record_rate_limit_wait(identifier: str):
    """Record that a caller had to wait for a token."""
    get_metrics_collector().increment_counter("rate_limit_waits_total", {"identifier": identifier})


def record_cache_event(event: str):
    """Record a cache hit, miss, bypass or error."""
    get_metrics_collector().increment_counter("cache_events_total", {"event": event})


def record_quota_rejected(limit_type: str, tenant_id: Optional[str] = None):
    labels = {"limit_type": limit_type}
    if tenant_id:
        labels["tenant_id"] = tenant_id

    get_metrics_collector().increment_counter("quota_rejections_total", labels)


def update_bucket_tokens(identifier: str, available_tokens: int):
    get_metrics_collector().set_gauge("rate_limit_available_tokens", {"identifier": identifier}, available_tokens)


def record_request_latency(path: str, latency_ms: float):
    get_metrics_collector().observe_histogram("provider_request_latency_ms", {"path": path}, latency_ms)


def get_metrics_summary() -> Dict[str, Any]:
    return get_metrics_collector().get_all_metrics()
