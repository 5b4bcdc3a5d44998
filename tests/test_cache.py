"""Tests for TTLCache."""

from __future__ import annotations

from cardvault.data.database import TTLCache


class FakeTime:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Test age-based expiry."""

    async def test_get_and_set(self):
        cache: TTLCache[list[str]] = TTLCache(ttl_seconds=10)
        assert await cache.get("sets") is None
        await cache.set("sets", ["LEA"])
        assert await cache.get("sets") == ["LEA"]

    async def test_entry_expires(self):
        time = FakeTime()
        cache: TTLCache[int] = TTLCache(ttl_seconds=10, clock=time)
        await cache.set("a", 1)

        time.now = 10
        assert await cache.get("a") == 1
        time.now = 10.5
        assert await cache.get("a") is None
        assert len(cache) == 0

    async def test_get_or_load_calls_loader_once(self):
        calls = 0

        async def load() -> int:
            nonlocal calls
            calls += 1
            return 42

        cache: TTLCache[int] = TTLCache(ttl_seconds=10)
        assert await cache.get_or_load("k", load) == 42
        assert await cache.get_or_load("k", load) == 42
        assert calls == 1

    async def test_invalidate_and_clear(self):
        cache: TTLCache[int] = TTLCache()
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.invalidate("a")
        assert await cache.get("a") is None
        await cache.clear()
        assert len(cache) == 0

    async def test_cleanup_expired(self):
        time = FakeTime()
        cache: TTLCache[int] = TTLCache(ttl_seconds=5, clock=time)
        await cache.set("old", 1)
        time.now = 4
        await cache.set("new", 2)
        time.now = 6

        assert await cache.cleanup_expired() == 1
        assert await cache.get("new") == 2
