"""
Domain-Aware Crawl Scheduler

Drives a breadth-first crawl from a seed URL. Each iteration pulls URLs from
the front of the frontier into per-domain batches, dispatches one task per
batch, and processes the URLs of a batch sequentially with an inter-request
delay. Discovered links feed back into the frontier.

All crawl state lives on the event loop thread. Counters that concurrent
batches share (``domain_counts``, ``last_processed``) are updated without an
``await`` between read and write, and link discovery re-checks membership
at mutation time, so no locks are needed.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional, Set
from urllib.parse import urlsplit

import structlog

from sitequarry.config.config import CacheConfig
from sitequarry.config.options import CrawlOptions, MapOptions, ScrapeOptions
from sitequarry.exceptions import InvalidURLError
from sitequarry.observability import gauge, increment, remove_labels
from sitequarry.processors.links import LinkFilter
from sitequarry.protocols import (
    CrawlResult,
    CrawlStatus,
    FrontierEntry,
    MapResult,
    PageData,
    PageProcessorProtocol,
    PageResult,
)
from sitequarry.utils.cache import TTLCache
from sitequarry.utils.rate_limiter import hostname_key

logger = structlog.get_logger(__name__)


def validate_seed(url: str) -> None:
    """Raise ``InvalidURLError`` unless ``url`` is an absolute http(s) URL."""
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise InvalidURLError(url, str(e)) from e
    if not parts.scheme or not parts.netloc:
        raise InvalidURLError(url)
    if parts.scheme not in ("http", "https"):
        raise InvalidURLError(url, f"unsupported scheme {parts.scheme!r}")


class WorkerSet:
    """
    In-flight task tracker with "wait for any" and "wait for all settled".

    Finished tasks leave the set on their own; exceptions escaping a worker
    are retrieved and logged instead of being left on the task.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def __bool__(self) -> bool:
        return bool(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_any(self) -> None:
        """Block until at least one in-flight task has finished."""
        if not self._tasks:
            return
        done, _ = await asyncio.wait(set(self._tasks), return_when=asyncio.FIRST_COMPLETED)
        self._tasks.difference_update(done)
        for task in done:
            self._report(task)

    async def wait_all_settled(self) -> None:
        """Wait for every task to finish; one failing task does not stop the others."""
        while self._tasks:
            pending = set(self._tasks)
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.difference_update(pending)
            for task in pending:
                self._report(task)

    @staticmethod
    def _report(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Crawl worker failed", task=task.get_name(), error=str(error), exc_info=error)


@dataclass
class CrawlState:
    """Mutable state of one crawl run."""

    visited: Set[str] = field(default_factory=set)
    queue: Deque[FrontierEntry] = field(default_factory=deque)
    queued: Set[str] = field(default_factory=set)
    depth: Dict[str, int] = field(default_factory=dict)
    domain_counts: Dict[str, int] = field(default_factory=dict)
    last_processed: Dict[str, float] = field(default_factory=dict)
    results: List[PageData] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    pages_processed: int = 0

    def enqueue(self, url: str, depth: int) -> None:
        # First-seen depth is kept
        self.depth.setdefault(url, depth)
        self.queue.append(FrontierEntry(url=url, depth=self.depth[url]))
        self.queued.add(url)

    @property
    def in_flight(self) -> int:
        return sum(self.domain_counts.values())


@dataclass
class CrawlContext:
    """Per-run collaborators and settings shared by the batch workers."""

    options: CrawlOptions
    scrape_options: ScrapeOptions
    link_filter: LinkFilter
    seen: TTLCache[bool]
    failed: TTLCache[str]


class CrawlScheduler:
    """
    Runs crawls over a page processor.

    The failed-URL cache is cleared at the start of every run. The seen-URL
    cache is fresh for every run unless one is injected, in which case it is
    shared by all runs of this scheduler and URLs seen by earlier runs are
    not rediscovered.
    """

    def __init__(
        self,
        processor: PageProcessorProtocol,
        *,
        seen_cache: Optional[TTLCache[bool]] = None,
        failed_cache: Optional[TTLCache[str]] = None,
        cache_config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.processor = processor
        self.cache_config = cache_config or CacheConfig()
        self.seen_cache = seen_cache
        self.failed_cache = failed_cache
        self._clock = clock

    async def run(self, seed_url: str, options: Optional[CrawlOptions] = None) -> CrawlResult:
        """
        Crawl from ``seed_url`` and return a structured result.

        Raises:
            InvalidURLError: if the seed is not an absolute http(s) URL
        """
        options = options or CrawlOptions()
        validate_seed(seed_url)

        crawl_id = uuid.uuid4().hex[:12]
        with structlog.contextvars.bound_contextvars(crawl_id=crawl_id):
            return await self._run(seed_url, options)

    def _new_context(self, options: CrawlOptions) -> CrawlContext:
        seen = self.seen_cache
        if seen is None:
            seen = TTLCache(self.cache_config.seen_url_ttl, name="seen_urls")
        failed = self.failed_cache
        if failed is None:
            failed = TTLCache(self.cache_config.failed_url_ttl, name="failed_urls")
        failed.clear()

        return CrawlContext(
            options=options,
            scrape_options=options.scrape_options(),
            link_filter=LinkFilter(
                options.include_patterns,
                options.exclude_patterns,
                options.allow_external_domains,
            ),
            seen=seen,
            failed=failed,
        )

    async def _run(self, seed_url: str, options: CrawlOptions) -> CrawlResult:
        ctx = self._new_context(options)
        state = CrawlState()
        state.enqueue(seed_url, 0)
        ctx.seen.set(seed_url, True)

        logger.info(
            "Starting crawl",
            seed=seed_url,
            max_depth=options.max_depth,
            max_pages=options.max_pages,
            concurrency=options.concurrency,
            domain_concurrency=options.domain_concurrency,
        )

        workers = WorkerSet()
        while state.pages_processed < options.max_pages:
            budget = options.max_pages - state.pages_processed - state.in_flight
            slots = min(options.concurrency, 2 * options.concurrency - len(workers))
            batches = self._form_batches(state, ctx, budget, slots) if budget > 0 and slots > 0 else {}

            if not batches:
                if workers:
                    await workers.wait_any()
                    continue
                break

            for domain, entries in batches.items():
                state.domain_counts[domain] = state.domain_counts.get(domain, 0) + len(entries)
                gauge("domain_in_flight", state.domain_counts[domain], labels={"domain": domain})
                workers.spawn(self._process_domain_batch(domain, entries, state, ctx), name=f"crawl:{domain}")

            while len(workers) > 2 * options.concurrency:
                logger.debug("Backpressure, waiting for a batch to finish", in_flight=len(workers))
                await workers.wait_any()

        await workers.wait_all_settled()
        return self._compile_result(state, ctx)

    def _form_batches(
        self, state: CrawlState, ctx: CrawlContext, budget: int, slots: int
    ) -> Dict[str, List[FrontierEntry]]:
        """
        Pull eligible URLs from the frontier into per-domain batches.

        At most ``slots`` batches are formed, one worker each, so the worker
        set never grows past twice the domain concurrency.

        Selected URLs are marked visited immediately. Ineligible URLs keep
        their place in the queue; already visited or failed ones are dropped.
        """
        options = ctx.options
        batches: Dict[str, List[FrontierEntry]] = {}
        kept: Deque[FrontierEntry] = deque()
        taken = 0

        while state.queue:
            entry = state.queue.popleft()
            if entry.url in state.visited or entry.url in ctx.failed:
                state.queued.discard(entry.url)
                continue

            domain = hostname_key(entry.url)
            batch = batches.get(domain)
            in_flight = state.domain_counts.get(domain, 0) + (len(batch) if batch else 0)
            domains_full = batch is None and len(batches) >= slots
            if taken >= budget or in_flight >= options.domain_concurrency or domains_full:
                kept.append(entry)
                continue

            batches.setdefault(domain, []).append(entry)
            state.visited.add(entry.url)
            state.queued.discard(entry.url)
            taken += 1

        state.queue = kept
        return batches

    async def _process_domain_batch(
        self,
        domain: str,
        entries: List[FrontierEntry],
        state: CrawlState,
        ctx: CrawlContext,
    ) -> None:
        try:
            for entry in entries:
                await self._respect_domain_delay(domain, state, ctx.options.domain_delay)
                try:
                    await self._process_url(entry, state, ctx)
                finally:
                    state.last_processed[domain] = self._clock()
        finally:
            remaining = state.domain_counts.get(domain, 0) - len(entries)
            if remaining > 0:
                state.domain_counts[domain] = remaining
                gauge("domain_in_flight", remaining, labels={"domain": domain})
            else:
                state.domain_counts.pop(domain, None)
                remove_labels("domain_in_flight", {"domain": domain})

    async def _respect_domain_delay(self, domain: str, state: CrawlState, delay: float) -> None:
        last = state.last_processed.get(domain)
        if last is None or delay <= 0:
            return
        wait = delay - (self._clock() - last)
        if wait > 0:
            await asyncio.sleep(wait)

    async def _process_url(self, entry: FrontierEntry, state: CrawlState, ctx: CrawlContext) -> None:
        url = entry.url
        if url in ctx.failed:
            state.pages_processed += 1
            increment("pages_processed", labels={"outcome": "skipped"})
            return

        logger.debug("Processing URL", url=url, depth=entry.depth)
        try:
            result = await self.processor.process(url, ctx.scrape_options)
        except Exception as e:
            logger.exception("Page processor raised", url=url)
            result = PageResult(success=False, error=f"Failed to process {url}: {e}")

        state.pages_processed += 1

        if not result.success:
            message = result.error or f"Failed to process {url}"
            if url not in message:
                message = f"{url}: {message}"
            ctx.failed.set(url, message)
            state.errors.append(message)
            increment("pages_processed", labels={"outcome": "failure"})
            logger.warning("Failed to process URL", url=url, error=message)
            return

        page = result.data
        page.url = page.url or url
        page.depth = entry.depth
        state.results.append(page)
        increment("pages_processed", labels={"outcome": "success"})

        if entry.depth < ctx.options.max_depth and page.links:
            self._discover_links(url, entry.depth, page.links, state, ctx)

    def _discover_links(
        self,
        source_url: str,
        depth: int,
        links: List[str],
        state: CrawlState,
        ctx: CrawlContext,
    ) -> None:
        added = 0
        for link in ctx.link_filter(links, source_url):
            if link in state.visited or link in state.queued or link in ctx.failed or link in ctx.seen:
                continue
            state.enqueue(link, depth + 1)
            ctx.seen.set(link, True)
            added += 1

        logger.debug("Discovered links", source=source_url, added=added, queue_size=len(state.queue))

    def _compile_result(self, state: CrawlState, ctx: CrawlContext) -> CrawlResult:
        remaining = sum(1 for entry in state.queue if entry.url not in state.visited and entry.url not in ctx.failed)
        budget_reached = state.pages_processed >= ctx.options.max_pages
        status = CrawlStatus.INCOMPLETE if budget_reached and remaining > 0 else CrawlStatus.COMPLETED

        logger.info(
            "Crawl finished",
            status=status.value,
            visited=len(state.visited),
            completed=len(state.results),
            errors=len(state.errors),
            remaining=remaining,
        )

        return CrawlResult(
            success=not state.errors,
            error="; ".join(state.errors) if state.errors else None,
            status=status,
            total=len(state.visited) + remaining,
            completed=len(state.results),
            data=state.results,
            remaining=remaining if status is CrawlStatus.INCOMPLETE else None,
            errors=list(state.errors),
        )

    async def map(self, url: str, options: Optional[MapOptions] = None) -> MapResult:
        return await map_site(self.processor, url, options)


def rank_by_search(links: List[str], search: str) -> List[str]:
    """Keep links containing ``search`` (case-insensitive), most occurrences first."""
    term = search.lower()
    matching = [link for link in links if term in link.lower()]
    return sorted(matching, key=lambda link: link.lower().count(term), reverse=True)


async def map_site(processor: PageProcessorProtocol, url: str, options: Optional[MapOptions] = None) -> MapResult:
    """
    Discover the links of a single page.

    Raises:
        InvalidURLError: if ``url`` is not an absolute http(s) URL
    """
    options = options or MapOptions()
    validate_seed(url)

    scrape_options = ScrapeOptions(formats=["links"], extract_links=True, fetch=options.fetch)
    try:
        result = await processor.process(url, scrape_options)
    except Exception as e:
        logger.exception("Mapping failed", url=url)
        return MapResult(success=False, error=f"Failed to map {url}: {e}")

    if not result.success or result.data.links is None:
        return MapResult(success=False, error=result.error or "Failed to extract links")

    links = LinkFilter(
        options.include_patterns,
        options.exclude_patterns,
        options.allow_external_domains,
    )(result.data.links, url)

    if options.search:
        links = rank_by_search(links, options.search)

    logger.info("Mapped site", url=url, links=len(links))
    return MapResult(success=True, links=links)
