"""
End-to-end crawls through the real fetch stack, page processor and scheduler.

HTTP is served in-process by ``httpx.MockTransport``; the heavy renderer is
either disabled or an ``AsyncMock``.
"""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from sitequarry import SiteQuarry
from sitequarry.config import CrawlOptions, ScrapeOptions
from sitequarry.exceptions import RenderError
from sitequarry.protocols import CrawlStatus

from tests.helpers.site import html_page, site_transport

ROOT = "https://site.test/"

SITE = {
    ROOT: html_page("Home", links=["/docs/", "blog.html", "/broken", "https://other.test/"]),
    "https://site.test/docs/": html_page("Docs", links=["intro", "../", "/docs/intro"]),
    "https://site.test/docs/intro": html_page("Intro", links=["/docs/intro/deeper"]),
    "https://site.test/docs/intro/deeper": html_page("Deeper"),
    "https://site.test/blog.html": html_page("Blog", links=["/docs/"]),
    "https://site.test/broken": (500, "Internal Server Error"),
    "https://other.test/": html_page("Elsewhere"),
}


@pytest.fixture
def requests():
    return []


@pytest_asyncio.fixture
async def quarry(test_config, requests):
    async with SiteQuarry(test_config, transport=site_transport(SITE, requests)) as instance:
        yield instance


def crawl_options(**overrides) -> CrawlOptions:
    values = dict(domain_delay=0, formats=["markdown", "links"])
    values.update(overrides)
    return CrawlOptions(**values)


@pytest.mark.integration
class TestCrawlEndToEnd:
    @pytest.mark.asyncio
    async def test_crawl_collects_pages_and_reports_failures(self, quarry, requests):
        result = await quarry.crawl(ROOT, crawl_options(max_depth=2))

        pages = {page.url: page for page in result.data}
        assert set(pages) == {
            ROOT,
            "https://site.test/docs/",
            "https://site.test/blog.html",
            "https://site.test/docs/intro",
        }
        assert pages[ROOT].depth == 0
        assert pages["https://site.test/docs/intro"].depth == 2
        assert "# Docs" in pages["https://site.test/docs/"].markdown
        assert pages[ROOT].metadata.title == "Home"

        assert result.status is CrawlStatus.COMPLETED
        assert not result.success
        assert result.errors == ["Fetch issue: Failed to fetch https://site.test/broken: HTTP error! Status: 500"]
        assert result.completed == 4
        assert result.total == 5

        assert "https://other.test/" not in requests
        assert "https://site.test/docs/intro/deeper" not in requests

    @pytest.mark.asyncio
    async def test_page_budget_leaves_backlog(self, quarry):
        result = await quarry.crawl(ROOT, crawl_options(max_pages=2))

        assert result.status is CrawlStatus.INCOMPLETE
        assert result.completed == 2
        assert result.remaining == 3
        assert result.to_dict()["remaining"] == 3

    @pytest.mark.asyncio
    async def test_crawl_uses_configured_defaults(self, test_config, requests):
        test_config.crawl.max_depth = 0
        test_config.crawl.domain_delay = 0
        async with SiteQuarry(test_config, transport=site_transport(SITE, requests)) as instance:
            result = await instance.crawl(ROOT)

        assert result.completed == 1
        assert requests == [ROOT]
        assert result.data[0].html is not None

    @pytest.mark.asyncio
    async def test_map_through_facade(self, quarry):
        result = await quarry.map(ROOT)

        assert result.success
        assert result.links == [
            "https://site.test/docs/",
            "https://site.test/blog.html",
            "https://site.test/broken",
        ]


@pytest.mark.integration
class TestRenderedCrawl:
    SHELL = (
        "<html><head><script src='/r.js'></script><script src='/v.js'></script>"
        "<script src='/m.js'></script><script src='/a.js'></script></head>"
        "<body><div id='app'></div></body></html>"
    )

    @pytest.mark.asyncio
    async def test_script_shell_is_rendered_and_links_followed(self, test_config):
        rendered = html_page("Rendered App", links=["/settings"])
        renderer = AsyncMock()
        renderer.render.return_value = rendered
        routes = {"https://app.test/": self.SHELL, "https://app.test/settings": html_page("Settings")}

        async with SiteQuarry(test_config, transport=site_transport(routes), renderer=renderer) as quarry:
            result = await quarry.crawl("https://app.test/", crawl_options(max_depth=1))

        pages = {page.url: page for page in result.data}
        assert pages["https://app.test/"].rendered_with_heavy_engine
        assert "# Rendered App" in pages["https://app.test/"].markdown
        assert not pages["https://app.test/settings"].rendered_with_heavy_engine
        renderer.render.assert_awaited_once()
        renderer.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_render_timeout_keeps_lightweight_content(self, test_config):
        renderer = AsyncMock()
        renderer.render.side_effect = RenderError("https://app.test/", "render timed out after 30.0s", reason="timeout")
        routes = {"https://app.test/": self.SHELL}

        async with SiteQuarry(test_config, transport=site_transport(routes), renderer=renderer) as quarry:
            result = await quarry.scrape("https://app.test/", ScrapeOptions(formats=["raw_html"]))

        assert result.success
        assert result.error is None
        assert result.data.raw_html == self.SHELL
        assert not result.data.rendered_with_heavy_engine

    @pytest.mark.asyncio
    async def test_failing_seed_is_not_rescued_by_renderer(self, test_config):
        test_config.render.enabled = True
        renderer = AsyncMock()
        renderer.render.return_value = html_page("Internal Server Error")
        routes = {"https://app.test/": (500, "Internal Server Error")}

        async with SiteQuarry(test_config, transport=site_transport(routes), renderer=renderer) as quarry:
            result = await quarry.crawl("https://app.test/", crawl_options())

        assert not result.success
        assert result.completed == 0
        assert result.data == []
        assert "Status: 500" in result.errors[0]
        renderer.render.assert_not_awaited()
