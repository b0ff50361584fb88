"""
Link extraction, normalization and filtering.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Sequence, Union
from urllib.parse import urljoin, urlsplit

import structlog
from selectolax.parser import HTMLParser

logger = structlog.get_logger(__name__)

SKIPPED_SCHEMES = ("javascript:", "mailto:", "tel:")

Matcher = Union[str, Pattern[str]]


def normalize_url(href: str, base_url: str) -> str:
    """Resolve ``href`` against ``base_url``; the input is returned if it cannot be resolved."""
    if href.startswith(("http://", "https://")):
        return href
    if href.startswith("#"):
        return f"{base_url}{href}"
    try:
        return urljoin(base_url, href)
    except ValueError as e:
        logger.debug("Failed to normalize URL", href=href, base_url=base_url, error=str(e))
        return href


def extract_links(html: str, base_url: str) -> List[str]:
    """Unique, order-preserving list of normalized anchor targets."""
    tree = HTMLParser(html)
    links: dict[str, None] = {}
    for anchor in tree.css("a[href]"):
        href = (anchor.attributes.get("href") or "").strip()
        if not href or href.startswith(SKIPPED_SCHEMES):
            continue
        links.setdefault(normalize_url(href, base_url), None)
    return list(links)


def compile_pattern(pattern: str) -> Matcher:
    """
    Turn a user pattern into a matcher.

    A pattern containing ``*`` becomes a regex searched anywhere in the URL,
    with ``.`` escaped and ``*`` meaning any run of characters. Other patterns
    are plain substrings.
    """
    if "*" not in pattern:
        return pattern
    try:
        return re.compile(pattern.replace(".", r"\.").replace("*", ".*"))
    except re.error as e:
        logger.warning("Invalid link pattern, matching it literally", pattern=pattern, error=str(e))
        return pattern


def matches(link: str, matcher: Matcher) -> bool:
    if isinstance(matcher, str):
        return matcher in link
    return matcher.search(link) is not None


def _host(url: str) -> Optional[str]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts.hostname


@dataclass
class LinkFilter:
    """Include/exclude/external-domain policy applied to discovered links."""

    include_patterns: Optional[Sequence[str]] = None
    exclude_patterns: Optional[Sequence[str]] = None
    allow_external_domains: bool = False
    _include: List[Matcher] = field(init=False, repr=False)
    _exclude: List[Matcher] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        include = list(self.include_patterns or [])
        # An empty include list or a bare "*" accepts everything
        self._include = [] if not include or "*" in include else [compile_pattern(p) for p in include]
        self._exclude = [compile_pattern(p) for p in self.exclude_patterns or []]

    def accepts(self, link: str, base_host: Optional[str]) -> bool:
        host = _host(link)
        if host is None:
            return False
        if not self.allow_external_domains and host != base_host:
            return False
        if self._include and not any(matches(link, m) for m in self._include):
            return False
        return not any(matches(link, m) for m in self._exclude)

    def __call__(self, links: Iterable[str], base_url: str) -> List[str]:
        base_host = _host(base_url)
        kept = [link for link in links if self.accepts(link, base_host)]
        logger.debug("Filtered links", base_url=base_url, kept=len(kept))
        return kept


def filter_links(
    links: Iterable[str],
    base_url: str,
    include_patterns: Optional[Sequence[str]] = None,
    exclude_patterns: Optional[Sequence[str]] = None,
    allow_external_domains: bool = False,
) -> List[str]:
    """Keep the links that pass the external-domain check, an include pattern and no exclude pattern."""
    return LinkFilter(include_patterns, exclude_patterns, allow_external_domains)(links, base_url)
