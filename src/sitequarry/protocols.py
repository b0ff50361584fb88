"""
Core data structures and collaborator contracts for SiteQuarry.

Data flows leaf to root: the adaptive fetcher produces ``FetchedContent``,
the page processor turns it into a ``PageResult`` and the crawl scheduler
aggregates page data into a ``CrawlResult``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol

if TYPE_CHECKING:
    from sitequarry.config.options import ScrapeOptions

# ============================================================================
# Enums and Constants
# ============================================================================

OutputFormat = Literal["markdown", "html", "raw_html", "screenshot", "links", "extract"]


class CrawlStatus(Enum):
    """Terminal state of a crawl run."""

    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


class DomainHint(Enum):
    """Result of the domain allow/deny fast path."""

    STATIC = "static"
    HEAVY = "heavy"
    UNKNOWN = "unknown"


# ============================================================================
# Fetch Layer
# ============================================================================


@dataclass
class FetchedContent:
    """Content produced once per URL by the adaptive fetcher."""

    html: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    rendered_with_heavy_engine: bool = False
    final_url: Optional[str] = None


@dataclass(frozen=True)
class ContentType:
    """Classification of a fetched document."""

    requires_rendering: bool
    format: str = "text/html"

    @property
    def is_static(self) -> bool:
        return not self.requires_rendering


# ============================================================================
# Page Layer
# ============================================================================


@dataclass
class PageMetadata:
    """Document metadata gathered from head tags."""

    source_url: str
    status_code: int
    title: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    keywords: Optional[List[str]] = None
    robots: Optional[str] = None
    og_title: Optional[str] = None
    og_description: Optional[str] = None
    og_url: Optional[str] = None
    og_image: Optional[str] = None
    og_site_name: Optional[str] = None
    og_locale_alternate: Optional[List[str]] = None
    twitter_title: Optional[str] = None
    twitter_description: Optional[str] = None
    twitter_image: Optional[str] = None
    twitter_card: Optional[str] = None
    site_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class PageData:
    """Per-page output in the representations that were requested."""

    url: Optional[str] = None
    depth: Optional[int] = None
    markdown: Optional[str] = None
    html: Optional[str] = None
    raw_html: Optional[str] = None
    screenshot: Optional[str] = None
    links: Optional[List[str]] = None
    extract: Optional[Dict[str, Any]] = None
    metadata: Optional[PageMetadata] = None
    rendered_with_heavy_engine: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key in ("url", "depth", "markdown", "html", "raw_html", "screenshot", "links", "extract"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.metadata is not None:
            payload["metadata"] = self.metadata.to_dict()
        return payload


@dataclass
class PageResult:
    """Outcome of processing one URL."""

    success: bool
    error: Optional[str] = None
    data: PageData = field(default_factory=PageData)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success, "data": self.data.to_dict()}
        if self.error:
            payload["error"] = self.error
        return payload


# Hooks receive the current result and return a possibly-modified one. A hook
# that returns a result with ``success=False`` stops processing of that URL.
TransformHook = Callable[[PageResult], Awaitable[PageResult]]


# ============================================================================
# Crawl Layer
# ============================================================================


@dataclass(frozen=True)
class FrontierEntry:
    """A URL waiting in the frontier with the depth it was first seen at."""

    url: str
    depth: int


@dataclass
class CrawlResult:
    """Structured outcome of a crawl run; always returned, never raised."""

    success: bool
    status: CrawlStatus
    total: int
    completed: int
    data: List[PageData] = field(default_factory=list)
    error: Optional[str] = None
    remaining: Optional[int] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
            "total": self.total,
            "completed": self.completed,
            "data": [page.to_dict() for page in self.data],
        }
        if self.error:
            payload["error"] = self.error
        if self.remaining is not None:
            payload["remaining"] = self.remaining
        return payload


@dataclass
class MapResult:
    """Links discovered from a single page in mapping mode."""

    success: bool
    links: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Aggregated outcome of a batch scrape."""

    success: bool
    data: List[PageData] = field(default_factory=list)
    error: Optional[str] = None


# ============================================================================
# LLM Layer
# ============================================================================


@dataclass
class ExtractResult:
    """Structured data returned by the LLM extraction client."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    raw_response: Optional[str] = None


@dataclass
class SummarizeResult:
    success: bool
    summary: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Collaborator Protocols
# ============================================================================


class ContentClassifier(Protocol):
    """Pluggable strategy deciding whether a page needs full rendering."""

    def quick_check(self, url: str) -> DomainHint:
        """Fast path based only on the URL's host."""
        ...

    def classify(self, html: str, url: str) -> ContentType:
        """Inspect fetched HTML and classify it."""
        ...


class HeavyRenderer(Protocol):
    """Executes page scripts over already-fetched HTML."""

    async def render(self, url: str, seed_html: Optional[str], *, timeout: float) -> str:
        """Return the serialized DOM after scripts ran.

        ``seed_html`` is the already-fetched document; ``None`` means no
        lightweight copy exists and the renderer must load ``url`` itself.
        """
        ...

    async def close(self) -> None:
        ...


class PageProcessorProtocol(Protocol):
    """Turns a URL into a ``PageResult`` in the requested formats."""

    async def process(self, url: str, options: "ScrapeOptions") -> PageResult:
        ...
