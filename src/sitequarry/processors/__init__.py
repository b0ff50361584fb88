"""Page-level processing: links, metadata, markdown and the page processor."""

from .links import LinkFilter, extract_links, filter_links, normalize_url
from .markdown import clean_html, convert_html_to_markdown
from .metadata import extract_metadata
from .page import PageProcessor, has_enough_content, run_hook

__all__ = [
    "LinkFilter",
    "PageProcessor",
    "clean_html",
    "convert_html_to_markdown",
    "extract_links",
    "extract_metadata",
    "filter_links",
    "has_enough_content",
    "normalize_url",
    "run_hook",
]
