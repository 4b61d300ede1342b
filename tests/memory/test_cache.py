"""Tests for ContextCache."""

import threading

import pytest

from continuum.memory import ContextCache


class FakeClock:
    """Manually advanced time source."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ContextCache:
    """Create a small cache driven by a fake clock."""
    return ContextCache(max_size=3, ttl_seconds=60, clock=clock)


class TestContextCacheInit:
    """Tests for cache construction."""

    def test_defaults(self):
        """Default capacity is 1000 users with a 15 minute TTL."""
        cache = ContextCache()
        assert cache.max_size == 1000
        assert cache.ttl_seconds == 900

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ContextCache(max_size=0)

    def test_invalid_ttl(self):
        with pytest.raises(ValueError):
            ContextCache(ttl_seconds=0)


class TestContextCacheGetSet:
    """Tests for reading and writing entries."""

    def test_get_missing(self, cache: ContextCache):
        assert cache.get("user-1") is None

    def test_set_then_get(self, cache: ContextCache):
        """A stored value is returned immediately."""
        cache.set("user-1", "context")
        assert cache.get("user-1") == "context"

    def test_set_overwrites(self, cache: ContextCache):
        cache.set("user-1", "old")
        cache.set("user-1", "new")
        assert cache.get("user-1") == "new"
        assert cache.size == 1

    def test_expires_after_ttl(self, cache: ContextCache, clock: FakeClock):
        """Entries are gone once the TTL has elapsed."""
        cache.set("user-1", "context")
        clock.advance(61)
        assert cache.get("user-1") is None
        assert cache.size == 0

    def test_valid_until_ttl(self, cache: ContextCache, clock: FakeClock):
        cache.set("user-1", "context")
        clock.advance(60)
        assert cache.get("user-1") == "context"

    def test_reading_does_not_extend_ttl(self, cache: ContextCache, clock: FakeClock):
        """Expiry is fixed at set time."""
        cache.set("user-1", "context")
        clock.advance(50)
        cache.get("user-1")
        clock.advance(20)
        assert cache.get("user-1") is None


class TestContextCacheEviction:
    """Tests for LRU eviction."""

    def test_evicts_least_recently_accessed(self, cache: ContextCache, clock: FakeClock):
        """The entry read longest ago goes first, not the newest."""
        cache.set("a", "A")
        clock.advance(1)
        cache.set("b", "B")
        clock.advance(1)
        cache.set("c", "C")
        clock.advance(1)
        cache.get("a")
        clock.advance(1)

        cache.set("d", "D")

        assert cache.size == 3
        assert cache.get("b") is None
        assert cache.get("a") == "A"
        assert cache.get("c") == "C"
        assert cache.get("d") == "D"

    def test_overwrite_at_capacity_keeps_others(self, cache: ContextCache, clock: FakeClock):
        """Updating an existing key never evicts another entry."""
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)

        cache.set("a", "A2")

        assert cache.size == 3
        assert cache.get("b") == "b"


class TestContextCacheInvalidation:
    """Tests for delete and clear."""

    def test_delete(self, cache: ContextCache):
        cache.set("user-1", "context")
        cache.delete("user-1")
        assert cache.get("user-1") is None

    def test_delete_missing(self, cache: ContextCache):
        cache.delete("nobody")  # Should not raise

    def test_clear(self, cache: ContextCache):
        cache.set("a", "A")
        cache.set("b", "B")
        cache.clear()
        assert cache.size == 0

    def test_stats(self, cache: ContextCache):
        cache.set("a", "A")
        assert cache.stats() == {"size": 1, "max_size": 3, "ttl_seconds": 60}


class TestContextCacheConcurrency:
    """Tests for use from several threads."""

    def test_concurrent_sets_respect_capacity(self):
        cache = ContextCache(max_size=50, ttl_seconds=60)

        def worker(offset: int) -> None:
            for i in range(200):
                cache.set(f"user-{offset}-{i}", "context")
                cache.get(f"user-{offset}-{i // 2}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.size <= 50
