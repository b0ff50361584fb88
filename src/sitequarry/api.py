"""
Public entry points.

``SiteQuarry`` owns the fetch stack, the page processor, the crawl scheduler,
the scrape cache and the rate limiter. The module-level coroutines create a
short-lived instance for one call.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, cast
from urllib.parse import urlsplit

import httpx
import structlog

from sitequarry.config import Config, CrawlOptions, ExtractOptions, MapOptions, ScrapeOptions, SummarizeOptions, settings
from sitequarry.crawler.detection import HeuristicContentDetector
from sitequarry.crawler.fetcher import AdaptiveFetcher, LightweightFetcher
from sitequarry.crawler.renderer import PlaywrightRenderer
from sitequarry.crawler.scheduler import CrawlScheduler, validate_seed
from sitequarry.exceptions import InvalidURLError
from sitequarry.llm.ollama import OllamaClient
from sitequarry.processors.page import PageProcessor
from sitequarry.protocols import (
    BatchResult,
    CrawlResult,
    ExtractResult,
    FetchedContent,
    HeavyRenderer,
    MapResult,
    PageData,
    PageProcessorProtocol,
    PageResult,
    SummarizeResult,
)
from sitequarry.utils.cache import TTLCache
from sitequarry.utils.rate_limiter import DomainRateLimiter

logger = structlog.get_logger(__name__)

BATCH_DOMAIN_DELAY = 0.2
INVALID_GROUP = "_invalid_"


@dataclass
class PerformanceCounters:
    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    total_time: float = 0.0


def scrape_cache_key(url: str, options: ScrapeOptions) -> str:
    payload = options.model_dump_json(exclude={"before_transform", "after_transform"}, by_alias=True)
    return f"scrape:{url}:{payload}"


def group_by_host(urls: List[str]) -> Dict[str, List[str]]:
    groups: Dict[str, List[str]] = {}
    for url in urls:
        try:
            host = urlsplit(url).hostname or INVALID_GROUP
        except ValueError:
            host = INVALID_GROUP
        groups.setdefault(host, []).append(url)
    return groups


class SiteQuarry:
    """
    Scrape, crawl, map, extract and summarize with shared caches.

    Usage::

        async with SiteQuarry() as quarry:
            result = await quarry.scrape("https://example.com")
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        renderer: Optional[HeavyRenderer] = None,
        processor: Optional[PageProcessorProtocol] = None,
        llm: Optional[OllamaClient] = None,
    ) -> None:
        self.config = config or cast(Config, settings)

        self.lightweight = LightweightFetcher(self.config.fetch, transport=transport)
        if renderer is None and self.config.render.enabled:
            renderer = PlaywrightRenderer(self.config.render, user_agent=self.config.fetch.user_agent)
        memo: Optional[TTLCache[FetchedContent]] = None
        if self.config.fetch.memoize:
            memo = TTLCache(self.config.cache.fetch_ttl, name="fetch")
        self.fetcher = AdaptiveFetcher(
            self.lightweight,
            renderer,
            HeuristicContentDetector(),
            growth_ratio=self.config.render.growth_ratio,
            memo_cache=memo,
        )

        self.llm = llm or OllamaClient(self.config.llm)
        self.processor: PageProcessorProtocol = processor or PageProcessor(
            self.fetcher,
            fallback_fetcher=self.lightweight,
            extractor=self.llm,
            cache_config=self.config.cache,
        )
        self.scheduler = CrawlScheduler(self.processor, cache_config=self.config.cache)
        self.scrape_cache: TTLCache[PageResult] = TTLCache(self.config.cache.scrape_ttl, name="scrape")
        self.rate_limiter = DomainRateLimiter(self.config.rate_limit)
        self._perf = PerformanceCounters()

    async def __aenter__(self) -> "SiteQuarry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def close(self) -> None:
        await self.fetcher.close()
        await self.llm.close()

    async def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> PageResult:
        """
        Scrape one URL through the scrape cache and the rate limiter.

        Links are extracted unless the options say otherwise. Results that
        carry transform hooks bypass the cache so the hooks always run.

        Raises:
            InvalidURLError: if ``url`` is not an absolute http(s) URL
        """
        start = time.perf_counter()
        self._perf.requests += 1
        validate_seed(url)

        options = options or ScrapeOptions()
        if options.extract_links is None:
            options = options.model_copy(update={"extract_links": True})

        cacheable = options.before_transform is None and options.after_transform is None
        key = scrape_cache_key(url, options) if cacheable else None
        if key is not None:
            cached = self.scrape_cache.get(key)
            if cached is not None:
                self._perf.cache_hits += 1
                self._perf.total_time += time.perf_counter() - start
                logger.debug("Cache hit", url=url)
                return cached

        self._perf.cache_misses += 1
        await self.rate_limiter.acquire(url)

        result = await self.processor.process(url, options)
        if key is not None and result.success and result.data.to_dict():
            self.scrape_cache.set(key, result)

        self._perf.total_time += time.perf_counter() - start
        return result

    async def batch_scrape(self, urls: List[str], options: Optional[ScrapeOptions] = None) -> BatchResult:
        """Scrape many URLs; hosts run in parallel, URLs of one host one after another."""
        results: List[PageData] = []
        errors: List[str] = []
        groups = group_by_host(urls)

        async def scrape_group(domain: str, domain_urls: List[str]) -> None:
            logger.debug("Processing domain group", domain=domain, urls=len(domain_urls))
            for index, url in enumerate(domain_urls):
                if index:
                    await asyncio.sleep(BATCH_DOMAIN_DELAY)
                try:
                    result = await self.scrape(url, options)
                except InvalidURLError as e:
                    errors.append(f"Failed to scrape {url}: {e}")
                    continue
                if result.success:
                    results.append(result.data)
                elif result.error:
                    errors.append(result.error)

        start = time.perf_counter()
        await asyncio.gather(*(scrape_group(domain, group) for domain, group in groups.items()))
        logger.info(
            "Batch scrape finished",
            urls=len(urls),
            successful=len(results),
            duration=round(time.perf_counter() - start, 3),
        )

        return BatchResult(
            success=not errors,
            data=results,
            error="; ".join(errors) if errors else None,
        )

    async def crawl(self, url: str, options: Optional[CrawlOptions] = None) -> CrawlResult:
        if options is None:
            options = CrawlOptions(**self.config.crawl.model_dump())
        start = time.perf_counter()
        result = await self.scheduler.run(url, options)
        logger.info("Crawl completed", url=url, duration=round(time.perf_counter() - start, 3), **self.performance_metrics())
        return result

    async def map(self, url: str, options: Optional[MapOptions] = None) -> MapResult:
        return await self.scheduler.map(url, options)

    async def extract(self, content: str, options: Optional[ExtractOptions] = None) -> ExtractResult:
        return await self.llm.extract_structured_data(content, options)

    async def summarize(self, content: str, options: Optional[SummarizeOptions] = None) -> SummarizeResult:
        return await self.llm.summarize_content(content, options)

    def performance_metrics(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = asdict(self._perf)
        requests = self._perf.requests
        metrics["cache_hit_rate"] = self._perf.cache_hits / requests if requests else 0.0
        metrics["average_request_time"] = self._perf.total_time / requests if requests else 0.0
        return metrics


async def scrape(url: str, options: Optional[ScrapeOptions] = None, *, config: Optional[Config] = None) -> PageResult:
    async with SiteQuarry(config) as quarry:
        return await quarry.scrape(url, options)


async def batch_scrape(
    urls: List[str], options: Optional[ScrapeOptions] = None, *, config: Optional[Config] = None
) -> BatchResult:
    async with SiteQuarry(config) as quarry:
        return await quarry.batch_scrape(urls, options)


async def crawl(url: str, options: Optional[CrawlOptions] = None, *, config: Optional[Config] = None) -> CrawlResult:
    async with SiteQuarry(config) as quarry:
        return await quarry.crawl(url, options)


async def map_site(url: str, options: Optional[MapOptions] = None, *, config: Optional[Config] = None) -> MapResult:
    async with SiteQuarry(config) as quarry:
        return await quarry.map(url, options)


async def extract(
    content: str, options: Optional[ExtractOptions] = None, *, config: Optional[Config] = None
) -> ExtractResult:
    async with SiteQuarry(config) as quarry:
        return await quarry.extract(content, options)


async def summarize(
    content: str, options: Optional[SummarizeOptions] = None, *, config: Optional[Config] = None
) -> SummarizeResult:
    async with SiteQuarry(config) as quarry:
        return await quarry.summarize(content, options)
