"""
Content-Type Detection

Decides whether a fetched page is a script-rendered shell that needs a
heavy render, using structural metrics of the static DOM. A host allow/deny
table short-circuits the DOM analysis for well-known sites.

The result is a heuristic; the adaptive fetcher verifies every heavy render
before trusting it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import FrozenSet, Iterable, Optional
from urllib.parse import urlparse

import structlog
from selectolax.parser import HTMLParser

from sitequarry.protocols import ContentType, DomainHint

logger = structlog.get_logger(__name__)

KNOWN_STATIC_DOMAINS: FrozenSet[str] = frozenset(
    {
        "example.com",
        "www.example.com",
        "en.wikipedia.org",
        "developer.mozilla.org",
        "www.iana.org",
        "www.mozilla.org",
        "static.mozilla.com",
    }
)

KNOWN_HEAVY_DOMAINS: FrozenSet[str] = frozenset(
    {
        "bun.sh",
        "angular.io",
        "reactjs.org",
        "vuejs.org",
        "svelte.dev",
    }
)

SUBSTANTIAL_TEXT_LENGTH = 500
SHELL_TEXT_LENGTH = 200
SHELL_MIN_SCRIPTS = 3

HEADING_SELECTOR = "h1, h2, h3, h4, h5, h6"
CONTAINER_SELECTOR = "article, section, main, .content, #content"
LAZY_LOAD_SELECTOR = '[data-src], [data-lazy], [data-lazy-src], [loading="lazy"]'


@dataclass(frozen=True)
class ContentMetrics:
    """Structural measurements of a static document."""

    text_length: int
    paragraphs: int
    headings: int
    content_elements: int
    links: int
    images: int
    scripts: int
    lazy_load_elements: int

    @property
    def has_substantial_content(self) -> bool:
        return self.text_length > SUBSTANTIAL_TEXT_LENGTH or (
            self.paragraphs > 2 and self.links > 0 and (self.headings > 0 or self.content_elements > 0)
        )

    @property
    def is_likely_shell(self) -> bool:
        return (
            self.text_length < SHELL_TEXT_LENGTH
            and self.paragraphs < 2
            and self.headings < 1
            and self.scripts > SHELL_MIN_SCRIPTS
        )

    @property
    def has_lazy_content(self) -> bool:
        return self.lazy_load_elements > 0

    @property
    def requires_rendering(self) -> bool:
        return (not self.has_substantial_content and self.is_likely_shell) or self.has_lazy_content


def measure(tree: HTMLParser) -> ContentMetrics:
    """Compute ``ContentMetrics`` for a parsed document."""
    body = tree.body
    text = body.text(deep=True) if body is not None else ""
    return ContentMetrics(
        text_length=len(text.strip()),
        paragraphs=len(tree.css("p")),
        headings=len(tree.css(HEADING_SELECTOR)),
        content_elements=len(tree.css(CONTAINER_SELECTOR)),
        links=len(tree.css("a[href]")),
        images=len(tree.css("img[src]")),
        scripts=len(tree.css("script")),
        lazy_load_elements=len(tree.css(LAZY_LOAD_SELECTOR)),
    )


def declared_format(tree: HTMLParser) -> str:
    """Document format from a content-type meta tag, ``text/html`` when absent."""
    for meta in tree.css("meta"):
        attrs = meta.attributes
        marker = (attrs.get("http-equiv") or attrs.get("name") or "").lower()
        if marker == "content-type" and attrs.get("content"):
            return str(attrs["content"])
    return "text/html"


class HeuristicContentDetector:
    """
    ``ContentClassifier`` backed by host tables and DOM metrics.

    Both host tables can be replaced per instance so deployments can tune the
    fast path without touching the fetcher or the scheduler.
    """

    def __init__(
        self,
        static_domains: Optional[Iterable[str]] = None,
        heavy_domains: Optional[Iterable[str]] = None,
    ) -> None:
        self.static_domains = frozenset(d.lower() for d in static_domains) if static_domains is not None else KNOWN_STATIC_DOMAINS
        self.heavy_domains = frozenset(d.lower() for d in heavy_domains) if heavy_domains is not None else KNOWN_HEAVY_DOMAINS

    def quick_check(self, url: str) -> DomainHint:
        try:
            hostname = (urlparse(url).hostname or "").lower()
        except ValueError:
            return DomainHint.UNKNOWN

        if hostname in self.static_domains:
            return DomainHint.STATIC
        if hostname in self.heavy_domains:
            return DomainHint.HEAVY
        return DomainHint.UNKNOWN

    def classify(self, html: str, url: str) -> ContentType:
        hint = self.quick_check(url)
        if hint is DomainHint.STATIC:
            return ContentType(requires_rendering=False)
        if hint is DomainHint.HEAVY:
            return ContentType(requires_rendering=True)

        tree = HTMLParser(html)
        metrics = measure(tree)
        requires_rendering = metrics.requires_rendering

        logger.debug(
            "Content analysis",
            url=url,
            substantial=metrics.has_substantial_content,
            shell=metrics.is_likely_shell,
            lazy=metrics.has_lazy_content,
            requires_rendering=requires_rendering,
            **asdict(metrics),
        )

        return ContentType(requires_rendering=requires_rendering, format=declared_format(tree))
