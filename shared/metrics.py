"""
Shared metrics configuration for the advanced request manager.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry, REGISTRY, start_http_server
from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from shared.config import get_settings


class RequestMetrics:
    """Centralized metrics collector for request lifecycles."""

    def __init__(self, namespace: str = "advanced_request", registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up lifecycle metrics."""
        self._metrics["attempts_total"] = Counter(
            "attempts_total",
            "Total transport attempts dispatched",
            ["name"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["failures_total"] = Counter(
            "failures_total",
            "Total failed attempts",
            ["name", "kind"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["completions_total"] = Counter(
            "completions_total",
            "Total finished requests",
            ["name"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["exhaustions_total"] = Counter(
            "exhaustions_total",
            "Total requests that ran out of retries",
            ["name"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["cancellations_total"] = Counter(
            "cancellations_total",
            "Total canceled requests",
            ["name"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["throttle_wait_seconds"] = Histogram(
            "throttle_wait_seconds",
            "Time spent waiting for an identity's interval to elapse",
            ["name"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["transport_duration_seconds"] = Histogram(
            "transport_duration_seconds",
            "Transport call duration in seconds",
            ["name", "method"],
            namespace=self.namespace,
            registry=self.registry
        )

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_attempt(self, name: str):
        self._metrics["attempts_total"].labels(name=name).inc()

    def record_failure(self, name: str, kind: str):
        """Record a failed attempt; kind is transport, timeout or classifier."""
        self._metrics["failures_total"].labels(name=name, kind=kind).inc()

    def record_completion(self, name: str):
        self._metrics["completions_total"].labels(name=name).inc()

    def record_exhaustion(self, name: str):
        self._metrics["exhaustions_total"].labels(name=name).inc()

    def record_cancellation(self, name: str):
        self._metrics["cancellations_total"].labels(name=name).inc()

    def observe_throttle_wait(self, name: str, seconds: float):
        self._metrics["throttle_wait_seconds"].labels(name=name).observe(seconds)

    @contextmanager
    def time_transport(self, name: str, method: str):
        """Context manager to time a transport call."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - start_time
            self._metrics["transport_duration_seconds"].labels(name=name, method=method).observe(duration)


_default_collector: Optional[RequestMetrics] = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> RequestMetrics:
    """Get the process-wide metrics collector on the default registry.

    Starts the exposition server on first use when ``metrics_port`` is set.
    """
    global _default_collector
    with _collector_lock:
        if _default_collector is None:
            collector = RequestMetrics()
            port = get_settings().metrics_port
            if port is not None:
                collector.start_metrics_server(port)
            _default_collector = collector
        return _default_collector
