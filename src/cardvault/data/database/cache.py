"""Async-safe in-memory cache with TTL expiration."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """Cache entry with timestamp for TTL tracking."""

    value: T
    timestamp: float


@dataclass
class TTLCache(Generic[T]):
    """Timestamped cache for small keyspaces (set lists, set pages, top cards).

    Entries are invalidated purely by age; there is no size bound because key
    cardinality stays in the hundreds.
    """

    ttl_seconds: float = 300
    clock: Callable[[], float] = time.monotonic
    _cache: dict[str, CacheEntry[T]] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def get(self, key: str) -> T | None:
        """Get a value from cache, returning None if expired or missing."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._cache[key]
                return None
            return entry.value

    async def set(self, key: str, value: T) -> None:
        """Store a value with the current timestamp."""
        async with self._lock:
            self._cache[key] = CacheEntry(value=value, timestamp=self.clock())

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value, calling loader to fill a miss."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        await self.set(key, value)
        return value

    async def invalidate(self, key: str) -> None:
        async with self._lock:
            self._cache.pop(key, None)

    async def clear(self) -> None:
        """Clear the cache."""
        async with self._lock:
            self._cache.clear()

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self.clock()
            expired = [k for k, e in self._cache.items() if self._is_expired(e, now)]
            for key in expired:
                del self._cache[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._cache)

    def _is_expired(self, entry: CacheEntry[T], now: float | None = None) -> bool:
        """Check if a cache entry has expired."""
        if now is None:
            now = self.clock()
        return (now - entry.timestamp) > self.ttl_seconds
