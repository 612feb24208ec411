"""Prometheus metrics for admission requests.

Every request increments `total_requests` plus exactly one outcome counter and
observes one duration, all labelled by (kind, resource) where kind is
"mutating" or "validating".
"""

from __future__ import annotations

from typing import Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

NAMESPACE = "app_admission_controller"

TOTAL_REQUESTS = "total_requests"
INVALID_REQUESTS = "invalid_requests"
REJECTED_REQUESTS = "rejected_requests"
INTERNAL_ERRORS = "internal_errors"
SUCCESSFUL_REQUESTS = "successful_requests"
REQUEST_DURATION = "request_duration_seconds"

_LABELS = ["kind", "resource"]

_COUNTERS = {
    TOTAL_REQUESTS: "Total number of admission requests.",
    INVALID_REQUESTS: "Admission requests with an invalid content type or body.",
    REJECTED_REQUESTS: "Admission requests denied by a validator.",
    INTERNAL_ERRORS: "Admission requests that failed with an internal error.",
    SUCCESSFUL_REQUESTS: "Admission requests admitted successfully.",
}


class MetricsSink(Protocol):
    def increment_counter(self, name: str, *labels: str) -> None: ...

    def observe_duration(self, name: str, *labels: str, seconds: float) -> None: ...


class PrometheusMetrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._counters = {
            name: Counter(name, doc, _LABELS, namespace=NAMESPACE, registry=self.registry)
            for name, doc in _COUNTERS.items()
        }
        self._histograms = {
            REQUEST_DURATION: Histogram(
                REQUEST_DURATION,
                "Duration of admission requests.",
                _LABELS,
                namespace=NAMESPACE,
                buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
                registry=self.registry,
            )
        }

    def increment_counter(self, name: str, *labels: str) -> None:
        self._counters[name].labels(*labels).inc()

    def observe_duration(self, name: str, *labels: str, seconds: float) -> None:
        self._histograms[name].labels(*labels).observe(seconds)

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
