"""Shared helpers: caching, rate limiting and output files."""

from .atomic import atomic_write_json, atomic_write_text
from .cache import CacheStats, TTLCache
from .rate_limiter import DomainRateLimiter, hostname_key
from .slugify import extension_for_format, url_to_filename

__all__ = [
    "CacheStats",
    "TTLCache",
    "DomainRateLimiter",
    "atomic_write_json",
    "atomic_write_text",
    "extension_for_format",
    "hostname_key",
    "url_to_filename",
]
