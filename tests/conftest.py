"""
Shared test configuration for SiteQuarry.

Network access is never needed: HTTP goes through ``httpx.MockTransport``
and the heavy renderer is replaced with ``AsyncMock`` stubs.
"""

import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from sitequarry.config import Config
from sitequarry.config.config import CacheConfig, RateLimitConfig, RateRule, RenderConfig

from tests.helpers.site import html_page

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")
    config.addinivalue_line("markers", "slow: Tests that take >10 seconds")


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """
    Cancel any asyncio task a test leaves behind so one test's stragglers
    cannot hang or pollute the next.
    """
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


@pytest.fixture
def test_config() -> Config:
    """Configuration without a browser and with a permissive rate limit."""
    return Config(
        render=RenderConfig(enabled=False),
        rate_limit=RateLimitConfig(default_rule=RateRule(tokens_per_interval=1000, interval=1.0)),
        cache=CacheConfig(),
    )


@pytest.fixture
def sample_html() -> str:
    """A server-rendered page with relative, absolute, external and skipped links."""
    return html_page(
        "Sample Page",
        links=[
            "/about",
            "contact.html",
            "https://site.test/blog/first-post",
            "https://other.test/elsewhere",
            "#top",
            "mailto:team@site.test",
            "javascript:void(0)",
        ],
        extra='<script>console.log("tracking")</script><style>body { color: red; }</style>'
        '<img src="/logo.png" alt="Logo">',
    )
