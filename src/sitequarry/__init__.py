"""
SiteQuarry - scrape, crawl and map websites into clean markdown.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .api import SiteQuarry, batch_scrape, crawl, extract, map_site, scrape, summarize
from .config import Config, CrawlOptions, ExtractOptions, MapOptions, ScrapeOptions, SummarizeOptions
from .exceptions import ExtractionError, FetchError, InvalidURLError, RenderError, SiteQuarryError
from .protocols import BatchResult, CrawlResult, CrawlStatus, MapResult, PageData, PageResult

__all__ = [
    "__version__",
    "BatchResult",
    "Config",
    "CrawlOptions",
    "CrawlResult",
    "CrawlStatus",
    "ExtractOptions",
    "ExtractionError",
    "FetchError",
    "InvalidURLError",
    "MapOptions",
    "MapResult",
    "PageData",
    "PageResult",
    "RenderError",
    "ScrapeOptions",
    "SiteQuarry",
    "SiteQuarryError",
    "SummarizeOptions",
    "batch_scrape",
    "crawl",
    "extract",
    "map_site",
    "scrape",
    "summarize",
]
