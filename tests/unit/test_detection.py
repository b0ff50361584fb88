"""Tests for heuristic content-type detection."""

import pytest
from selectolax.parser import HTMLParser

from sitequarry.crawler.detection import (
    ContentMetrics,
    HeuristicContentDetector,
    declared_format,
    measure,
)
from sitequarry.protocols import DomainHint

from tests.helpers.site import html_page

SPA_SHELL = """
<html><head>
<script src="/runtime.js"></script><script src="/vendor.js"></script>
<script src="/main.js"></script><script>window.__STATE__ = {}</script>
</head><body><div id="root"></div></body></html>
"""


def metrics(**overrides) -> ContentMetrics:
    values = dict(
        text_length=0,
        paragraphs=0,
        headings=0,
        content_elements=0,
        links=0,
        images=0,
        scripts=0,
        lazy_load_elements=0,
    )
    values.update(overrides)
    return ContentMetrics(**values)


@pytest.mark.unit
class TestContentMetrics:
    def test_long_text_is_substantial(self):
        assert metrics(text_length=501).has_substantial_content
        assert not metrics(text_length=500).has_substantial_content

    def test_structured_short_page_is_substantial(self):
        assert metrics(paragraphs=3, links=1, headings=1).has_substantial_content
        assert metrics(paragraphs=3, links=1, content_elements=1).has_substantial_content
        assert not metrics(paragraphs=3, links=0, headings=1).has_substantial_content

    def test_shell_thresholds(self):
        assert metrics(text_length=10, scripts=4).is_likely_shell
        assert not metrics(text_length=10, scripts=3).is_likely_shell
        assert not metrics(text_length=200, scripts=10).is_likely_shell
        assert not metrics(text_length=10, scripts=10, headings=1).is_likely_shell

    def test_lazy_content_forces_rendering(self):
        assert metrics(text_length=5000, paragraphs=20, lazy_load_elements=1).requires_rendering

    def test_substantial_content_never_needs_rendering_without_lazy_elements(self):
        assert not metrics(text_length=600, scripts=20).requires_rendering


@pytest.mark.unit
class TestMeasure:
    def test_counts_structure(self):
        tree = HTMLParser(
            '<html><body><article><h2>T</h2><p>a</p><p>b</p>'
            '<a href="/x">x</a><img src="/i.png"><img data-src="/lazy.png">'
            "<script>1</script></article></body></html>"
        )
        m = measure(tree)
        assert m.paragraphs == 2
        assert m.headings == 1
        assert m.content_elements == 1
        assert m.links == 1
        assert m.images == 1
        assert m.scripts == 1
        assert m.lazy_load_elements == 1

    def test_declared_format_from_meta(self):
        tree = HTMLParser('<head><meta http-equiv="Content-Type" content="application/xhtml+xml"></head>')
        assert declared_format(tree) == "application/xhtml+xml"
        assert declared_format(HTMLParser("<p>x</p>")) == "text/html"


@pytest.mark.unit
class TestHeuristicContentDetector:
    def test_quick_check_uses_host_tables(self):
        detector = HeuristicContentDetector()
        assert detector.quick_check("https://example.com/") is DomainHint.STATIC
        assert detector.quick_check("https://bun.sh/docs") is DomainHint.HEAVY
        assert detector.quick_check("https://site.test/") is DomainHint.UNKNOWN
        assert detector.quick_check("http://[broken") is DomainHint.UNKNOWN

    def test_host_tables_are_replaceable(self):
        detector = HeuristicContentDetector(static_domains=["Docs.Internal"], heavy_domains=[])
        assert detector.quick_check("https://docs.internal/") is DomainHint.STATIC
        assert detector.quick_check("https://bun.sh/") is DomainHint.UNKNOWN

    def test_spa_shell_requires_rendering(self):
        result = HeuristicContentDetector().classify(SPA_SHELL, "https://app.test/")
        assert result.requires_rendering
        assert not result.is_static

    def test_server_rendered_page_is_static(self):
        result = HeuristicContentDetector().classify(html_page(links=["/a"]), "https://site.test/")
        assert result.is_static
        assert result.format == "text/html"

    def test_known_hosts_skip_analysis(self):
        detector = HeuristicContentDetector()
        assert detector.classify(SPA_SHELL, "https://example.com/").is_static
        assert detector.classify(html_page(), "https://vuejs.org/").requires_rendering
