"""Logging and metrics for SiteQuarry."""

from __future__ import annotations

import contextlib
from typing import Any, Dict, Optional

from .logging import configure_logging
from .metrics import METRICS, start_metrics_server

__all__ = [
    "configure_logging",
    "METRICS",
    "start_metrics_server",
    "increment",
    "gauge",
    "histogram",
    "remove_labels",
    "export_prometheus",
]


# Convenience functions for metrics
def increment(name: str, value: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
    """Increment a counter metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).inc(value)
        else:
            metric.inc(value)


def gauge(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    """Set a gauge metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).set(value)
        else:
            metric.set(value)


def histogram(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    """Observe a histogram metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).observe(value)
        else:
            metric.observe(value)


def remove_labels(name: str, labels: Dict[str, Any]) -> None:
    """Drop one labelled child of a metric so it is no longer exported."""
    if name in METRICS:
        # Another crawl over the same domain may have dropped it already
        with contextlib.suppress(KeyError):
            METRICS[name].remove(*(str(v) for v in labels.values()))


def export_prometheus() -> str:
    """Export metrics in Prometheus format."""
    from prometheus_client import generate_latest

    return generate_latest().decode("utf-8")
