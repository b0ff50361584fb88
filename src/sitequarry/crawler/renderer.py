"""
Heavy renderer backed by a headless Playwright browser.

The renderer is seeded with HTML the lightweight fetcher already downloaded:
the main document request is fulfilled from that copy, so the page URL is
not fetched a second time. Subresources and script-initiated requests go to
the network as usual.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog
from playwright.async_api import Browser, BrowserContext, ConsoleMessage, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitequarry.config.config import RenderConfig
from sitequarry.exceptions import RenderError

logger = structlog.get_logger(__name__)

NULL_REFERENCE_MARKERS = (
    "null is not an object",
    "undefined is not an object",
    "cannot read properties of null",
    "cannot read properties of undefined",
)


def render_failure_reason(error: BaseException) -> str:
    """Bucket a render failure into not_implemented, null_reference, timeout or other."""
    if isinstance(error, RenderError) and error.reason != "other":
        return error.reason
    if isinstance(error, (TimeoutError, PlaywrightTimeoutError)):
        return "timeout"

    message = str(error).lower()
    if "notyetimplemented" in message or "not implemented" in message:
        return "not_implemented"
    if any(marker in message for marker in NULL_REFERENCE_MARKERS):
        return "null_reference"
    if "timeout" in message or "timed out" in message:
        return "timeout"
    return "other"


class ScriptErrorCounter:
    """Logs page script errors up to a cap, then suppresses them with one notice."""

    def __init__(self, url: str, cap: int) -> None:
        self.url = url
        self.cap = cap
        self.count = 0

    def record(self, message: str) -> None:
        self.count += 1
        if self.count <= self.cap:
            logger.debug("Renderer script error", url=self.url, error=message)
        if self.count == self.cap:
            logger.debug("Suppressing further renderer errors", url=self.url, cap=self.cap)

    def on_console(self, message: ConsoleMessage) -> None:
        if message.type == "error":
            self.record(message.text)

    def on_page_error(self, error: Any) -> None:
        self.record(str(error))


class PlaywrightRenderer:
    """
    ``HeavyRenderer`` that executes page scripts in headless Chromium.

    The browser is launched on first use and shared by every render; each
    render gets its own context, which is closed on every exit path.
    """

    def __init__(self, config: Optional[RenderConfig] = None, *, user_agent: Optional[str] = None) -> None:
        self.config = config or RenderConfig()
        self.user_agent = user_agent
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                browser_type = getattr(self._playwright, self.config.browser)
                self._browser = await browser_type.launch(headless=self.config.headless)
                logger.info("Headless browser launched", browser=self.config.browser)
            return self._browser

    def load_wait(self, timeout: float) -> float:
        """Seconds spent waiting for the load signal, capped below the timeout."""
        return min(timeout * self.config.load_wait_ratio, self.config.max_load_wait)

    async def render(self, url: str, seed_html: Optional[str], *, timeout: float) -> str:
        try:
            browser = await self._ensure_browser()
        except PlaywrightError as e:
            raise RenderError(url, f"browser launch failed: {e}", reason=render_failure_reason(e)) from e

        context: Optional[BrowserContext] = None
        errors = ScriptErrorCounter(url, self.config.max_console_errors)
        try:
            async with asyncio.timeout(timeout):
                context = await browser.new_context(user_agent=self.user_agent)
                page = await context.new_page()
                page.on("console", errors.on_console)
                page.on("pageerror", errors.on_page_error)

                if seed_html is not None:
                    await self._serve_seed(page, seed_html)

                response = await page.goto(url, wait_until="commit")
                if response is None or not response.ok:
                    status = response.status if response is not None else "no response"
                    raise RenderError(url, f"navigation failed: HTTP error! Status: {status}")
                try:
                    await page.wait_for_load_state("load", timeout=self.load_wait(timeout) * 1000)
                except PlaywrightTimeoutError:
                    logger.debug("Load signal not received, serializing current DOM", url=url)

                try:
                    return await page.content()
                except PlaywrightError as e:
                    if seed_html is None:
                        raise
                    logger.debug("DOM serialization failed, returning seed HTML", url=url, error=str(e))
                    return seed_html

        except TimeoutError as e:
            raise RenderError(url, f"render timed out after {timeout}s", reason="timeout") from e
        except PlaywrightError as e:
            raise RenderError(url, str(e), reason=render_failure_reason(e)) from e
        finally:
            if errors.count:
                logger.debug("Renderer script errors", url=url, count=errors.count)
            if context is not None:
                await self._close_context(url, context)

    @staticmethod
    async def _serve_seed(page: Any, seed_html: str) -> None:
        served = False

        async def _route_handler(route: Route) -> None:
            nonlocal served
            if not served and route.request.is_navigation_request():
                served = True
                await route.fulfill(status=200, content_type="text/html; charset=utf-8", body=seed_html)
            else:
                await route.continue_()

        await page.route("**/*", _route_handler)

    @staticmethod
    async def _close_context(url: str, context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.warning("Failed to close browser context", url=url, error=str(e))

    async def close(self) -> None:
        """Shut down the browser and the Playwright driver."""
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Headless browser closed")
