"""
Expiring key-value store used for URL dedup, failure suppression and
memoization of expensive conversions.

Expiry is lazy: a read of an expired entry is a miss and removes the entry.
Stale entries that are never read again are reclaimed by ``clear_expired``,
which runs opportunistically from ``set`` and from an optional background
sweeper task. There is no size bound.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

from sitequarry.observability import increment

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MIN_SWEEP_GAP = 30.0


@dataclass
class CacheItem(Generic[T]):
    value: T
    expiry: float
    metadata: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    hit_rate: float


class TTLCache(Generic[T]):
    """TTL cache with lazy expiry and a periodic sweep."""

    def __init__(
        self,
        default_ttl: float = 60 * 60,
        *,
        name: str = "cache",
        sweep_interval: float = 5 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.name = name
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._items: Dict[str, CacheItem[T]] = {}
        self._hits = 0
        self._misses = 0
        self._last_sweep = clock()
        self._sweeper: Optional[asyncio.Task[None]] = None

    def set(self, key: str, value: T, ttl: Optional[float] = None, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (default TTL when omitted)."""
        expiry = self._clock() + (self.default_ttl if ttl is None else ttl)
        self._items[key] = CacheItem(value=value, expiry=expiry, metadata=metadata)
        self.clear_expired()

    def get(self, key: str) -> Optional[T]:
        item = self._live_item(key)
        if item is None:
            self._misses += 1
            increment("cache_operations", labels={"cache": self.name, "result": "miss"})
            return None
        self._hits += 1
        increment("cache_operations", labels={"cache": self.name, "result": "hit"})
        return item.value

    def has(self, key: str) -> bool:
        return self._live_item(key) is not None

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def metadata(self, key: str) -> Optional[Dict[str, Any]]:
        item = self._live_item(key)
        return item.metadata if item else None

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[T]], ttl: Optional[float] = None) -> T:
        """Return the cached value or await ``compute`` and cache its result."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await compute()
        self.set(key, value, ttl)
        return value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()
        self._hits = 0
        self._misses = 0

    def clear_expired(self, *, force: bool = False) -> int:
        """Drop every expired entry; throttled unless ``force`` is set."""
        now = self._clock()
        if not force and now - self._last_sweep < MIN_SWEEP_GAP:
            return 0
        self._last_sweep = now

        expired = [key for key, item in self._items.items() if now > item.expiry]
        for key in expired:
            del self._items[key]

        if expired:
            logger.debug("Cache cleanup", cache=self.name, removed=len(expired))
        return len(expired)

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            size=len(self._items),
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total else 0.0,
        )

    # --- Background sweep ---

    def start_sweeper(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.clear_expired(force=True)

    def _live_item(self, key: str) -> Optional[CacheItem[T]]:
        item = self._items.get(key)
        if item is None:
            return None
        if self._clock() > item.expiry:
            del self._items[key]
            return None
        return item
