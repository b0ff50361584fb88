"""
Per-Domain Token Bucket Rate Limiter

Each hostname owns a bucket of ``tokens_per_interval`` tokens that refills in
whole intervals. ``acquire`` consumes a token or sleeps until the next refill.
"""

from __future__ import annotations

import asyncio
import functools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import urlparse

import structlog

from sitequarry.config.config import RateLimitConfig, RateRule
from sitequarry.observability import histogram

logger = structlog.get_logger(__name__)

R = TypeVar("R")


@dataclass
class TokenBucket:
    """Token state for a single domain."""

    tokens_per_interval: int
    interval: float
    tokens_left: int
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed < self.interval:
            return
        intervals = int(elapsed // self.interval)
        self.tokens_left = min(self.tokens_per_interval, self.tokens_left + intervals * self.tokens_per_interval)
        # Keep the unused part of the current interval
        self.last_refill = now - (elapsed % self.interval)


def hostname_key(url: str) -> str:
    """Bucket key for ``url``; anything without a host is keyed by itself."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return url
    return host or url


class DomainRateLimiter:
    """
    Domain-keyed token bucket limiter.

    Buckets are created lazily from the default rule. ``update_rule`` replaces
    a domain's rule but keeps its current token count and refill time.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = config or RateLimitConfig()
        self.default_rule = config.default_rule
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        for domain, rule in config.domain_rules.items():
            self._buckets[domain] = self._new_bucket(rule)

        logger.debug(
            "Rate limiter initialized",
            tokens_per_interval=self.default_rule.tokens_per_interval,
            interval=self.default_rule.interval,
        )

    def _new_bucket(self, rule: RateRule) -> TokenBucket:
        return TokenBucket(
            tokens_per_interval=rule.tokens_per_interval,
            interval=rule.interval,
            tokens_left=rule.tokens_per_interval,
            last_refill=self._clock(),
        )

    def _get_domain_lock(self, domain: str) -> asyncio.Lock:
        if domain not in self._locks:
            self._locks[domain] = asyncio.Lock()
        return self._locks[domain]

    def _get_bucket(self, domain: str) -> TokenBucket:
        if domain not in self._buckets:
            self._buckets[domain] = self._new_bucket(self.default_rule)
        return self._buckets[domain]

    async def acquire(self, url: str) -> None:
        """Consume one token for the URL's host, waiting for a refill if needed."""
        domain = hostname_key(url)
        async with self._get_domain_lock(domain):
            waited = 0.0
            while True:
                bucket = self._get_bucket(domain)
                now = self._clock()
                bucket.refill(now)
                if bucket.tokens_left > 0:
                    bucket.tokens_left -= 1
                    if waited:
                        histogram("rate_limit_wait_seconds", waited)
                    return

                delay = bucket.interval - (now - bucket.last_refill)
                logger.debug("Rate limit reached, waiting", domain=domain, delay=round(delay, 3))
                await asyncio.sleep(max(delay, 0.0))
                waited += max(delay, 0.0)

    def wrap(
        self,
        fn: Callable[..., Awaitable[R]],
        url_extractor: Callable[..., str],
    ) -> Callable[..., Awaitable[R]]:
        """Wrap an async callable so each call acquires a token first."""

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> R:
            await self.acquire(url_extractor(*args, **kwargs))
            return await fn(*args, **kwargs)

        return wrapper

    def update_rule(self, domain: str, rule: RateRule) -> None:
        existing = self._buckets.get(domain)
        self._buckets[domain] = TokenBucket(
            tokens_per_interval=rule.tokens_per_interval,
            interval=rule.interval,
            tokens_left=existing.tokens_left if existing else rule.tokens_per_interval,
            last_refill=existing.last_refill if existing else self._clock(),
        )
        logger.info("Updated rate rule", domain=domain, tokens_per_interval=rule.tokens_per_interval)

    def get_rules(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every bucket's rule and token state."""
        return {
            domain: {
                "tokens_per_interval": bucket.tokens_per_interval,
                "interval": bucket.interval,
                "tokens_left": bucket.tokens_left,
                "last_refill": bucket.last_refill,
            }
            for domain, bucket in self._buckets.items()
        }
