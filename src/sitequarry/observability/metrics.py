"""
Defines the Prometheus metrics exported by SiteQuarry.
"""

from __future__ import annotations

from typing import Any, Dict

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# The module may be imported more than once during a test session; reusing an
# already registered collector keeps registration idempotent.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[no-untyped-def]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing

        try:
            return metric_cls(name, documentation, *args, **kwargs)
        except ValueError:
            # Registration lost the race: use the collector that won.
            return _PROM_REGISTRY._names_to_collectors[name]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)
Gauge = _duplicate_safe_factory(_OrigGauge)
Histogram = _duplicate_safe_factory(_OrigHistogram)


def _create_metrics() -> Dict[str, Any]:
    return {
        "pages_processed": Counter(
            "sitequarry_pages_processed_total",
            "Pages that reached a terminal outcome during a crawl",
            ["outcome"],
        ),
        "fetch_total": Counter(
            "sitequarry_fetch_total",
            "Fetch attempts by strategy and outcome",
            ["strategy", "outcome"],
        ),
        "render_fallback": Counter(
            "sitequarry_render_fallback_total",
            "Heavy renders discarded in favour of the lightweight result",
            ["reason"],
        ),
        "domain_in_flight": Gauge(
            "sitequarry_domain_in_flight",
            "URLs currently in flight per domain",
            ["domain"],
        ),
        "fetch_latency_seconds": Histogram(
            "sitequarry_fetch_latency_seconds",
            "Latency of lightweight fetches",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        ),
        "cache_operations": Counter(
            "sitequarry_cache_operations_total",
            "Cache lookups by cache name and result",
            ["cache", "result"],
        ),
        "rate_limit_wait_seconds": Histogram(
            "sitequarry_rate_limit_wait_seconds",
            "Time spent waiting for a rate limit token",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        ),
        "llm_requests": Counter(
            "sitequarry_llm_requests_total",
            "Ollama chat requests by model and outcome",
            ["model", "outcome"],
        ),
        "llm_request_seconds": Histogram(
            "sitequarry_llm_request_seconds",
            "Latency of Ollama chat requests",
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port)
