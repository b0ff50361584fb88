"""Configuration models for SiteQuarry."""

from .config import (
    CacheConfig,
    Config,
    CrawlDefaults,
    FetchConfig,
    LLMConfig,
    MonitoringConfig,
    OutputConfig,
    RateLimitConfig,
    RateRule,
    RenderConfig,
    settings,
)
from .options import (
    CrawlOptions,
    ExtractOptions,
    FetchOptions,
    LocationOptions,
    MapOptions,
    ScrapeOptions,
    SummarizeOptions,
)

__all__ = [
    "CacheConfig",
    "Config",
    "CrawlDefaults",
    "CrawlOptions",
    "ExtractOptions",
    "FetchConfig",
    "FetchOptions",
    "LLMConfig",
    "LocationOptions",
    "MapOptions",
    "MonitoringConfig",
    "OutputConfig",
    "RateLimitConfig",
    "RateRule",
    "RenderConfig",
    "ScrapeOptions",
    "SummarizeOptions",
    "settings",
]
