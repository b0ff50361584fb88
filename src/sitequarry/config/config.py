"""
Configuration management for SiteQuarry using Pydantic.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, ClassVar, Dict, List, cast

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SiteQuarry/1.0;)"

# --- Nested Configuration Models ---


class FetchConfig(BaseModel):
    """Lightweight HTTP fetch settings."""

    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds.")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent string for HTTP requests.")
    accept: str = Field(
        default="text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        description="Accept header sent with every request.",
    )
    accept_language: str = Field(default="en-US,en;q=0.5")
    follow_redirects: bool = True
    max_redirects: int = Field(default=5, ge=0)
    transport_retries: int = Field(default=0, ge=0, description="Connection-level retries handled by httpx.")
    http2: bool = False
    memoize: bool = Field(default=False, description="Memoize fetched content by URL for the cache TTL.")

    def default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": self.accept,
            "Accept-Language": self.accept_language,
        }


class RenderConfig(BaseModel):
    """Heavy (script-executing) render settings."""

    enabled: bool = True
    headless: bool = True
    browser: str = Field(default="chromium", description="Playwright browser type to launch.")
    max_load_wait: float = Field(default=8.0, gt=0, description="Hard cap for the load-signal wait in seconds.")
    load_wait_ratio: float = Field(default=0.8, gt=0, le=1, description="Fraction of the timeout spent waiting.")
    max_console_errors: int = Field(default=10, ge=0)
    growth_ratio: float = Field(
        default=1.1, ge=1.0, description="Rendered HTML must exceed the static HTML by this factor."
    )


class CrawlDefaults(BaseModel):
    """Defaults merged into every crawl request."""

    max_depth: int = Field(default=3, ge=0)
    max_pages: int = Field(default=100, ge=1)
    concurrency: int = Field(default=5, ge=1, description="Domains processed concurrently.")
    domain_concurrency: int = Field(default=2, ge=1, description="In-flight URLs allowed per domain.")
    domain_delay: float = Field(default=0.2, ge=0, description="Seconds between requests to one domain.")
    allow_external_domains: bool = False


class CacheConfig(BaseModel):
    """TTL settings (seconds) for the various caches."""

    scrape_ttl: float = Field(default=15 * 60, gt=0)
    markdown_ttl: float = Field(default=30 * 60, gt=0)
    extraction_ttl: float = Field(default=30 * 60, gt=0)
    seen_url_ttl: float = Field(default=60 * 60, gt=0)
    failed_url_ttl: float = Field(default=60 * 60, gt=0)
    fetch_ttl: float = Field(default=5 * 60, gt=0)
    sweep_interval: float = Field(default=5 * 60, gt=0)


class RateRule(BaseModel):
    tokens_per_interval: int = Field(default=5, ge=1)
    interval: float = Field(default=1.0, gt=0, description="Refill interval in seconds.")


class RateLimitConfig(BaseModel):
    """Token bucket settings for the facade rate limiter."""

    default_rule: RateRule = Field(default_factory=RateRule)
    domain_rules: Dict[str, RateRule] = Field(default_factory=dict)


class LLMConfig(BaseModel):
    """Local Ollama inference server settings."""

    host: str = Field(default="http://127.0.0.1:11434", description="Ollama server URL.")
    model: str = Field(default="gemma3:27b")
    request_timeout: float = Field(default=300.0, gt=0)
    health_timeout: float = Field(default=3.0, gt=0)
    tags_timeout: float = Field(default=5.0, gt=0)
    health_cache_ttl: float = Field(default=60.0, gt=0)
    model_cache_ttl: float = Field(default=10 * 60, gt=0)

    @field_validator("host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    metrics_enabled: bool = True

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


class OutputConfig(BaseModel):
    directory: str = Field(default="output", description="Default directory for --dir output.")
    filename_max_length: int = Field(default=64, ge=8)
    formats: List[str] = Field(default=["markdown"])


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "SiteQuarry"
    version: str = "0.1.0"
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    crawl: CrawlDefaults = Field(default_factory=CrawlDefaults)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    model_config = SettingsConfigDict(env_prefix="SITEQUARRY_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "sitequarry.yaml", current_dir / "sitequarry.yml"):
        if path.exists():
            return path
    return None


# --- Lazy Configuration Loader ---


class LazyConfig:
    """
    A proxy for the Config object that delays its loading and validation
    until an attribute is first accessed. This prevents configuration errors
    from crashing the application on import.
    """

    _config: ClassVar[Config | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __getattr__(self, name: str) -> Any:
        if self.__class__._config is None:
            with self.__class__._lock:
                if self.__class__._config is None:
                    self.__class__._config = self._load_config_with_fallback()
        return getattr(self.__class__._config, name)

    def _load_config_with_fallback(self) -> Config:
        """Load configuration from file or fall back to defaults."""
        config_path = find_config_file()
        if config_path:
            try:
                log.info("Lazy loading configuration from: %s", config_path)
                return Config.from_yaml(config_path)
            except (ValidationError, FileNotFoundError, yaml.YAMLError) as e:
                log.error(
                    "Failed to load or validate configuration from '%s': %s. "
                    "Falling back to default settings. Please check your config file.",
                    config_path,
                    e,
                    exc_info=log.getEffectiveLevel() <= logging.DEBUG,
                )
        else:
            log.debug("No config file found. Using default settings for lazy load.")

        try:
            return Config()
        except ValidationError as e:
            log.critical("FATAL: Default configuration is invalid: %s", e, exc_info=True)
            raise RuntimeError(f"Default configuration is invalid, cannot start: {e}") from e


# --- Global Settings Instance ---
settings: "Config" = cast("Config", LazyConfig())
