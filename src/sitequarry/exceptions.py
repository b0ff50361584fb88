"""
Exception hierarchy for SiteQuarry.

Only ``InvalidURLError`` is meant to escape the public API; every other error
is caught at the per-URL boundary and reported inside result objects.
"""

from __future__ import annotations

from typing import Optional


class SiteQuarryError(Exception):
    """Base class for all SiteQuarry errors."""


class InvalidURLError(SiteQuarryError, ValueError):
    """Raised for malformed seed URLs before any crawl state is built."""

    def __init__(self, url: str, reason: str = "missing scheme or host") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class FetchError(SiteQuarryError):
    """A lightweight fetch failed with an HTTP status or a transport error."""

    def __init__(
        self,
        url: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.cause = cause
        super().__init__(f"Failed to fetch {url}: {message}")


class RenderError(SiteQuarryError):
    """The heavy renderer could not produce a document."""

    def __init__(self, url: str, message: str, *, reason: str = "other") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to render {url}: {message}")


class ExtractionError(SiteQuarryError):
    """The LLM server rejected or failed a request."""
