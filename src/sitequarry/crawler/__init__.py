"""Fetching, content detection and crawl scheduling."""

from .detection import ContentMetrics, HeuristicContentDetector
from .fetcher import AdaptiveFetcher, LightweightFetcher
from .renderer import PlaywrightRenderer, render_failure_reason
from .scheduler import CrawlScheduler, CrawlState, WorkerSet, map_site, validate_seed

__all__ = [
    "AdaptiveFetcher",
    "ContentMetrics",
    "CrawlScheduler",
    "CrawlState",
    "HeuristicContentDetector",
    "LightweightFetcher",
    "PlaywrightRenderer",
    "WorkerSet",
    "map_site",
    "render_failure_reason",
    "validate_seed",
]
