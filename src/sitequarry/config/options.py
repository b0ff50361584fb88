"""
Per-call option models validated at the public API boundary.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitequarry.protocols import OutputFormat, TransformHook


class FetchOptions(BaseModel):
    """Options forwarded to the adaptive fetcher for a single URL."""

    headers: Optional[Dict[str, str]] = Field(default=None, description="Overrides the default request headers.")
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds.")
    follow_redirects: bool = True


class LocationOptions(BaseModel):
    country: Optional[str] = None
    languages: Optional[List[str]] = None


class ExtractOptions(BaseModel):
    """LLM structured extraction request."""

    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    system_prompt: Optional[str] = None
    prompt: Optional[str] = None
    model: Optional[str] = None
    ollama_host: Optional[str] = None
    model_options: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)


class SummarizeOptions(BaseModel):
    model: Optional[str] = None
    max_length: int = Field(default=200, gt=0, description="Maximum summary length in words.")
    ollama_host: Optional[str] = None
    model_options: Optional[Dict[str, Any]] = None


class ScrapeOptions(BaseModel):
    """What to produce for one page and how to fetch it."""

    formats: List[OutputFormat] = Field(default_factory=lambda: ["markdown"])
    extract_metadata: bool = True
    extract_links: Optional[bool] = Field(
        default=None, description="Defaults to True when 'links' is among the formats."
    )
    location: Optional[LocationOptions] = None
    fetch: FetchOptions = Field(default_factory=FetchOptions)
    extract_options: Optional[ExtractOptions] = None
    before_transform: Optional[TransformHook] = None
    after_transform: Optional[TransformHook] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def wants_links(self) -> bool:
        if self.extract_links is None:
            return "links" in self.formats
        return self.extract_links

    def request_headers(self) -> Optional[Dict[str, str]]:
        """Headers implied by the location options, layered over explicit ones."""
        headers = dict(self.fetch.headers) if self.fetch.headers else None
        if self.location is not None:
            headers = headers or {}
            headers["Accept-Language"] = ",".join(self.location.languages or []) or "en-US"
        return headers


class LinkFilterOptions(BaseModel):
    include_patterns: Optional[List[str]] = None
    exclude_patterns: Optional[List[str]] = None
    allow_external_domains: bool = False


class CrawlOptions(LinkFilterOptions):
    """Options for a recursive crawl run."""

    max_depth: int = Field(default=3, ge=0)
    max_pages: int = Field(default=100, ge=1)
    concurrency: int = Field(default=5, ge=1)
    domain_concurrency: int = Field(default=2, ge=1)
    domain_delay: float = Field(default=0.2, ge=0, description="Seconds between requests to one domain.")
    formats: List[OutputFormat] = Field(default_factory=lambda: ["markdown", "html", "links"])
    fetch: FetchOptions = Field(default_factory=FetchOptions)
    extract_options: Optional[ExtractOptions] = None
    before_transform: Optional[TransformHook] = None
    after_transform: Optional[TransformHook] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def scrape_options(self) -> ScrapeOptions:
        """Options used for each page of the crawl; links are always extracted."""
        return ScrapeOptions(
            formats=list(self.formats),
            extract_metadata=True,
            extract_links=True,
            fetch=self.fetch,
            extract_options=self.extract_options,
            before_transform=self.before_transform,
            after_transform=self.after_transform,
        )


class MapOptions(LinkFilterOptions):
    """Single-page link discovery with optional keyword relevance."""

    search: Optional[str] = None
    max_depth: int = Field(default=3, ge=0, description="Accepted for symmetry with crawl; mapping is one level.")
    fetch: FetchOptions = Field(default_factory=FetchOptions)

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v
