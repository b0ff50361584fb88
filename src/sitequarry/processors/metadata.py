"""
Document metadata from head tags, Open Graph and Twitter cards.
"""

from __future__ import annotations

from typing import List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from sitequarry.protocols import PageMetadata

PARSER = "html.parser"


def _meta(soup: BeautifulSoup, **attrs: str) -> Optional[str]:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    return str(content) if content else None


def _meta_all(soup: BeautifulSoup, **attrs: str) -> List[str]:
    return [str(tag["content"]) for tag in soup.find_all("meta", attrs=attrs) if tag.get("content")]


def _text(soup: BeautifulSoup, name: str) -> Optional[str]:
    tag = soup.find(name)
    if tag is None:
        return None
    return tag.get_text().strip() or None


def site_name_from_url(url: str) -> Optional[str]:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname[4:] if hostname.startswith("www.") else hostname


def extract_metadata(html: str, source_url: str, status_code: int) -> PageMetadata:
    """Collect title, description, language and social card fields from ``html``."""
    soup = BeautifulSoup(html, PARSER)

    og_title = _meta(soup, property="og:title")
    og_description = _meta(soup, property="og:description")
    og_site_name = _meta(soup, property="og:site_name")
    twitter_title = _meta(soup, name="twitter:title")
    twitter_description = _meta(soup, name="twitter:description")

    html_tag = soup.find("html")
    lang = html_tag.get("lang") if html_tag is not None else None

    keywords_content = _meta(soup, name="keywords")
    keywords = [k.strip() for k in keywords_content.split(",") if k.strip()] if keywords_content else None

    locale_alternates = _meta_all(soup, property="og:locale:alternate")

    return PageMetadata(
        source_url=source_url,
        status_code=status_code,
        title=_text(soup, "title") or og_title or twitter_title or _text(soup, "h1"),
        description=_meta(soup, name="description") or og_description or twitter_description,
        language=(str(lang) if lang else None)
        or _meta(soup, **{"http-equiv": "content-language"})
        or _meta(soup, name="language"),
        keywords=keywords or None,
        robots=_meta(soup, name="robots"),
        og_title=og_title,
        og_description=og_description,
        og_url=_meta(soup, property="og:url"),
        og_image=_meta(soup, property="og:image"),
        og_site_name=og_site_name,
        og_locale_alternate=locale_alternates or None,
        twitter_title=twitter_title,
        twitter_description=twitter_description,
        twitter_image=_meta(soup, name="twitter:image"),
        twitter_card=_meta(soup, name="twitter:card"),
        site_name=og_site_name or site_name_from_url(source_url),
    )
