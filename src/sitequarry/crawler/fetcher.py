"""
Adaptive Fetching

``LightweightFetcher`` performs a plain HTTP GET with httpx.
``AdaptiveFetcher`` decides per URL whether the lightweight result is enough
or whether to escalate to a heavy (script-executing) render, and reconciles
the two into one ``FetchedContent``.

A heavy render is only trusted when it grew the document by more than the
configured ratio; anything else, including every kind of render failure,
keeps the lightweight result.
"""

from __future__ import annotations

import time
from typing import Optional

import httpx
import structlog

from sitequarry.config.config import FetchConfig
from sitequarry.config.options import FetchOptions
from sitequarry.crawler.detection import HeuristicContentDetector
from sitequarry.crawler.renderer import render_failure_reason
from sitequarry.exceptions import FetchError
from sitequarry.observability import histogram, increment
from sitequarry.protocols import ContentClassifier, DomainHint, FetchedContent, HeavyRenderer
from sitequarry.utils.cache import TTLCache

logger = structlog.get_logger(__name__)


class LightweightFetcher:
    """Plain HTTP GET with browser-like default headers."""

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config or FetchConfig()
        if transport is None:
            transport = httpx.AsyncHTTPTransport(retries=self.config.transport_retries, http2=self.config.http2)

        self._client = httpx.AsyncClient(
            headers=self.config.default_headers(),
            timeout=self.config.timeout,
            follow_redirects=self.config.follow_redirects,
            max_redirects=self.config.max_redirects,
            transport=transport,
        )

    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> FetchedContent:
        """
        GET ``url`` and return its body.

        Raises:
            FetchError: on a non-2xx status or any transport failure
        """
        options = options or FetchOptions(timeout=self.config.timeout)
        start = time.perf_counter()
        try:
            response = await self._client.get(
                url,
                headers=options.headers,
                timeout=options.timeout,
                follow_redirects=options.follow_redirects,
            )
        except httpx.HTTPError as e:
            increment("fetch_total", labels={"strategy": "lightweight", "outcome": "error"})
            raise FetchError(url, str(e) or type(e).__name__, cause=e) from e
        finally:
            histogram("fetch_latency_seconds", time.perf_counter() - start)

        if not response.is_success:
            increment("fetch_total", labels={"strategy": "lightweight", "outcome": "http_error"})
            raise FetchError(url, f"HTTP error! Status: {response.status_code}", status_code=response.status_code)

        increment("fetch_total", labels={"strategy": "lightweight", "outcome": "success"})
        return FetchedContent(
            html=response.text,
            status_code=response.status_code,
            headers=dict(response.headers),
            final_url=str(response.url),
        )

    async def close(self) -> None:
        await self._client.aclose()


class AdaptiveFetcher:
    """
    Lightweight fetch with verified escalation to a heavy render.

    Strategy per URL:
    1. Known-static host: lightweight only.
    2. Known-heavy host: lightweight, then heavy, keeping heavy only if it grew.
    3. Otherwise lightweight first. If that fails, a heavy render is the last
       resort and the lightweight error is raised when it fails too. If the
       classifier says the page needs rendering, try heavy with the same
       growth check and silent fallback.
    """

    def __init__(
        self,
        lightweight: LightweightFetcher,
        renderer: Optional[HeavyRenderer] = None,
        classifier: Optional[ContentClassifier] = None,
        *,
        growth_ratio: float = 1.1,
        memo_cache: Optional[TTLCache[FetchedContent]] = None,
    ) -> None:
        self.lightweight = lightweight
        self.renderer = renderer
        self.classifier = classifier or HeuristicContentDetector()
        self.growth_ratio = growth_ratio
        self.memo_cache = memo_cache

    async def __aenter__(self) -> "AdaptiveFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> FetchedContent:
        options = options or FetchOptions()

        if self.memo_cache is not None:
            cached = self.memo_cache.get(f"fetch:{url}")
            if cached is not None:
                return cached

        hint = self.classifier.quick_check(url)
        if hint is DomainHint.STATIC:
            content = await self.lightweight.fetch(url, options)
        elif hint is DomainHint.HEAVY:
            logger.debug("Known script-heavy host, rendering", url=url)
            light = await self.lightweight.fetch(url, options)
            content = await self._try_heavy(url, light, options.timeout)
        else:
            content = await self._fetch_general(url, options)

        if self.memo_cache is not None:
            self.memo_cache.set(f"fetch:{url}", content)
        return content

    async def _fetch_general(self, url: str, options: FetchOptions) -> FetchedContent:
        try:
            light = await self.lightweight.fetch(url, options)
        except FetchError as light_error:
            logger.warning("Lightweight fetch failed", url=url, error=str(light_error))
            # The server answered; a browser would get the same error page
            if self.renderer is None or light_error.status_code is not None:
                raise
            return await self._render_as_last_resort(url, light_error, options.timeout)

        content_type = self.classifier.classify(light.html, url)
        if not content_type.requires_rendering:
            return light

        logger.info("Page appears to need rendering", url=url)
        return await self._try_heavy(url, light, options.timeout)

    async def _render_as_last_resort(self, url: str, light_error: FetchError, timeout: float) -> FetchedContent:
        assert self.renderer is not None
        logger.info("Attempting heavy render as fallback", url=url)
        try:
            html = await self.renderer.render(url, None, timeout=timeout)
        except Exception as render_error:
            increment("fetch_total", labels={"strategy": "heavy", "outcome": "error"})
            logger.warning(
                "Heavy render fallback failed",
                url=url,
                reason=render_failure_reason(render_error),
                error=str(render_error),
            )
            raise light_error

        increment("fetch_total", labels={"strategy": "heavy", "outcome": "success"})
        return FetchedContent(html=html, status_code=200, headers={}, rendered_with_heavy_engine=True, final_url=url)

    async def _try_heavy(self, url: str, light: FetchedContent, timeout: float) -> FetchedContent:
        if self.renderer is None:
            return light

        try:
            html = await self.renderer.render(url, light.html, timeout=timeout)
        except Exception as e:
            reason = render_failure_reason(e)
            increment("fetch_total", labels={"strategy": "heavy", "outcome": "error"})
            increment("render_fallback", labels={"reason": reason})
            logger.info("Heavy render failed, using lightweight result", url=url, reason=reason, error=str(e))
            return light

        increment("fetch_total", labels={"strategy": "heavy", "outcome": "success"})
        if len(html) > len(light.html) * self.growth_ratio:
            logger.info("Heavy render enhanced content", url=url, before=len(light.html), after=len(html))
            return FetchedContent(
                html=html,
                status_code=light.status_code,
                headers=light.headers,
                rendered_with_heavy_engine=True,
                final_url=light.final_url,
            )

        increment("render_fallback", labels={"reason": "insufficient_growth"})
        logger.debug("Heavy render did not add enough content", url=url, before=len(light.html), after=len(html))
        return light

    async def close(self) -> None:
        await self.lightweight.close()
        if self.renderer is not None:
            await self.renderer.close()
