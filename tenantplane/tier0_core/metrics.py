"""
tenantplane.tier0_core.metrics
───────────────────────────────
Counters, gauges, and histograms for the control plane, with standard labels.
Exported through the Prometheus /metrics endpoint served on --metrics-addr.

Minimal stack: prometheus-client
"""
from __future__ import annotations

import os
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_SERVICE = os.getenv("APP_NAME", "tenantplane")
_ENV = os.getenv("TENANTPLANE_ENVIRONMENT", "development")
_DEFAULT_LABEL_VALUES = [_SERVICE, _ENV]


def _label_values(extra: dict[str, str]) -> dict[str, str]:
    # prometheus-client refuses a mix of positional and keyword label values.
    return {**dict(zip(_DEFAULT_LABELS, _DEFAULT_LABEL_VALUES)), **extra}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with the standard labels.

    Usage:
        reconciles = counter("tenantplane_reconcile_total", "Reconciles", ["result"])
        reconciles(result="success").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_label_values(extra_labels))

    return _counter


def gauge(name: str, description: str, labels: list[str] | None = None) -> Callable:
    all_labels = _DEFAULT_LABELS + (labels or [])
    g = Gauge(name, description, all_labels)

    def _gauge(**extra_labels: str) -> Gauge:
        return g.labels(**_label_values(extra_labels))

    return _gauge


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
) -> Callable:
    all_labels = _DEFAULT_LABELS + (labels or [])
    h = Histogram(name, description, all_labels, buckets=buckets)

    def _histogram(**extra_labels: str) -> Histogram:
        return h.labels(**_label_values(extra_labels))

    return _histogram


# ── Control plane metrics ─────────────────────────────────────────────────────

reconcile_total = counter(
    "tenantplane_reconcile_total", "Tenant reconciles by result", ["result"]
)
reconcile_duration = histogram(
    "tenantplane_reconcile_duration_seconds", "Tenant reconcile duration", ["result"]
)
admission_decisions_total = counter(
    "tenantplane_admission_decisions_total", "Admission decisions", ["endpoint", "result"]
)
quota_pool_exhausted = gauge(
    "tenantplane_quota_pool_exhausted",
    "1 when a tenant quota pool is exhausted for a resource",
    ["tenant", "index", "resource"],
)
tenant_size = gauge("tenantplane_tenant_size", "Namespaces bound to a tenant", ["tenant"])


def start_metrics_server(port: int) -> None:
    """Start the Prometheus HTTP metrics server. Call once at startup."""
    start_http_server(port)


__all__ = [
    "counter", "gauge", "histogram",
    "reconcile_total", "reconcile_duration", "admission_decisions_total",
    "quota_pool_exhausted", "tenant_size", "start_metrics_server",
]
