"""
HTML to Markdown conversion with markdownify.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup
from markdownify import markdownify

PARSER = "html.parser"
STRIPPED_TAGS = ("script", "style")
EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def _strip_tags(soup: BeautifulSoup) -> BeautifulSoup:
    for tag in soup.find_all(STRIPPED_TAGS):
        tag.decompose()
    return soup


def clean_html(html: str) -> str:
    """Return ``html`` without ``<script>`` and ``<style>`` elements."""
    return str(_strip_tags(BeautifulSoup(html, PARSER)))


def absolutize_images(soup: BeautifulSoup, base_url: str) -> None:
    """Rewrite root-relative ``img[src]`` values to absolute URLs on the base origin."""
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        return
    origin = f"{parts.scheme}://{parts.netloc}"
    for img in soup.find_all("img", src=True):
        src = str(img["src"])
        if src.startswith("/") and not src.startswith("//"):
            img["src"] = f"{origin}{src}"


def convert_html_to_markdown(html: str, base_url: Optional[str] = None) -> str:
    """
    Convert ``html`` to Markdown.

    Headings use ATX style, emphasis uses ``*`` and code blocks are fenced.
    Scripts and styles are dropped before conversion.
    """
    soup = _strip_tags(BeautifulSoup(html, PARSER))
    if base_url:
        absolutize_images(soup, base_url)

    markdown = markdownify(
        str(soup),
        heading_style="ATX",
        strong_em_symbol="*",
        bullets="-",
    )
    return EXCESS_BLANK_LINES.sub("\n\n", markdown).strip()
