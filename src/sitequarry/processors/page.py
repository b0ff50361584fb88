"""
Page Processor

Turns one URL into a ``PageResult`` in the requested output formats.

A failed adaptive fetch is retried once with a bare lightweight GET. The
result is still a success when enough content was recovered (long enough
markdown, any links, or a title/description), with the fetch problem kept
as a non-fatal ``error`` note.
"""

from __future__ import annotations

import inspect
from typing import Any, Dict, Optional, Protocol

import structlog

from sitequarry.config.config import CacheConfig
from sitequarry.config.options import ExtractOptions, FetchOptions, ScrapeOptions
from sitequarry.exceptions import FetchError
from sitequarry.processors.links import extract_links
from sitequarry.processors.markdown import clean_html, convert_html_to_markdown
from sitequarry.processors.metadata import extract_metadata
from sitequarry.protocols import ExtractResult, FetchedContent, PageData, PageMetadata, PageResult, TransformHook
from sitequarry.utils.cache import TTLCache

logger = structlog.get_logger(__name__)

MIN_MARKDOWN_CHARS = 100


class Fetcher(Protocol):
    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> FetchedContent:
        ...


class Extractor(Protocol):
    async def extract_structured_data(self, content: str, options: Optional[ExtractOptions] = None) -> ExtractResult:
        ...


def has_enough_content(data: PageData) -> bool:
    """True when a degraded fetch still produced something worth returning."""
    if data.markdown and len(data.markdown) > MIN_MARKDOWN_CHARS:
        return True
    if data.links:
        return True
    return bool(data.metadata and (data.metadata.title or data.metadata.description))


async def run_hook(hook: Optional[TransformHook], result: PageResult) -> PageResult:
    """Apply a transform hook; a hook that returns nothing keeps the (possibly mutated) input."""
    if hook is None:
        return result
    outcome: Any = hook(result)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome if isinstance(outcome, PageResult) else result


class PageProcessor:
    """Fetches a page and renders it into markdown, cleaned HTML, links, metadata and extractions."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        fallback_fetcher: Optional[Fetcher] = None,
        extractor: Optional[Extractor] = None,
        markdown_cache: Optional[TTLCache[str]] = None,
        extraction_cache: Optional[TTLCache[Dict[str, Any]]] = None,
        cache_config: Optional[CacheConfig] = None,
    ) -> None:
        cache_config = cache_config or CacheConfig()
        self.fetcher = fetcher
        self.fallback_fetcher = fallback_fetcher
        self.extractor = extractor
        self.markdown_cache = markdown_cache or TTLCache(cache_config.markdown_ttl, name="markdown")
        self.extraction_cache = extraction_cache or TTLCache(cache_config.extraction_ttl, name="extraction")

    async def process(self, url: str, options: Optional[ScrapeOptions] = None) -> PageResult:
        options = options or ScrapeOptions()
        try:
            return await self._process(url, options)
        except Exception as e:
            logger.exception("Unexpected error while processing page", url=url)
            return PageResult(success=False, error=f"Failed to scrape {url}: {e}", data=PageData(url=url))

    async def _process(self, url: str, options: ScrapeOptions) -> PageResult:
        fetch_options = FetchOptions(
            headers=options.request_headers(),
            timeout=options.fetch.timeout,
            follow_redirects=options.fetch.follow_redirects,
        )

        html = ""
        status_code = 0
        rendered = False
        fetch_error: Optional[str] = None
        try:
            content = await self.fetcher.fetch(url, fetch_options)
            html, status_code, rendered = content.html, content.status_code, content.rendered_with_heavy_engine
        except FetchError as e:
            fetch_error = str(e)
            logger.warning("Fetch error", url=url, error=fetch_error)
            recovered = await self._bare_fetch(url)
            if recovered is not None:
                html, status_code = recovered.html, recovered.status_code

        result = PageResult(
            success=fetch_error is None,
            error=f"Fetch issue: {fetch_error}" if fetch_error else None,
            data=PageData(url=url, rendered_with_heavy_engine=rendered),
        )

        result = await run_hook(options.before_transform, result)
        if not result.success:
            return result

        data = result.data
        if options.extract_metadata:
            data.metadata = extract_metadata(html, url, status_code)
        else:
            data.metadata = PageMetadata(source_url=url, status_code=status_code)

        if options.wants_links:
            data.links = extract_links(html, url)

        for fmt in options.formats:
            if fmt == "markdown":
                data.markdown = self._markdown(url, html)
            elif fmt == "html":
                data.html = clean_html(html)
            elif fmt == "raw_html":
                data.raw_html = html
            elif fmt == "extract":
                data.extract = await self._extract(url, html, data, options.extract_options)
            elif fmt == "screenshot":
                data.screenshot = ""

        if fetch_error and has_enough_content(data):
            result.success = True
            result.error = f"Partial content retrieved despite fetch issues: {fetch_error}"

        return await run_hook(options.after_transform, result)

    async def _bare_fetch(self, url: str) -> Optional[FetchedContent]:
        if self.fallback_fetcher is None:
            return None
        try:
            content = await self.fallback_fetcher.fetch(url, FetchOptions())
        except FetchError as e:
            logger.warning("Basic fetch also failed", url=url, error=str(e))
            return None
        logger.info("Recovered content via basic fetch", url=url)
        return content

    def _markdown(self, url: str, html: str) -> str:
        key = f"markdown:{url}:{len(html)}"
        markdown = self.markdown_cache.get(key)
        if markdown is None:
            markdown = convert_html_to_markdown(html, base_url=url)
            self.markdown_cache.set(key, markdown)
        return markdown

    async def _extract(
        self,
        url: str,
        html: str,
        data: PageData,
        extract_options: Optional[ExtractOptions],
    ) -> Dict[str, Any]:
        if extract_options is None or self.extractor is None:
            return {}

        markdown = data.markdown if data.markdown is not None else self._markdown(url, html)
        if len(markdown.strip()) < MIN_MARKDOWN_CHARS:
            logger.warning("Markdown content is too short for extraction", url=url, length=len(markdown))
            return {"warning": "Content was too short for meaningful extraction", "url": url}

        key = f"extract:{url}:{extract_options.model or 'default'}:{len(markdown)}"
        cached = self.extraction_cache.get(key)
        if cached is not None:
            logger.debug("Using cached extraction result", url=url)
            return cached

        extracted = await self.extractor.extract_structured_data(markdown, extract_options)
        if extracted.success and extracted.data is not None:
            self.extraction_cache.set(key, extracted.data)
            return extracted.data

        logger.error("Extraction error", url=url, error=extracted.error)
        if extracted.raw_response:
            return {"_raw": extracted.raw_response}
        if extracted.error:
            return {"error": extracted.error, "url": url}
        return {"notice": "No data was extracted", "url": url}
