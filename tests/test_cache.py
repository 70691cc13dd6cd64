"""Tests for LRUCacheStore."""

import pytest

from domgo.storage.cache import (
    API_CACHE_CONFIG,
    LISTING_CACHE_CONFIG,
    CacheConfig,
    LRUCacheStore,
    make_cache_key,
)


@pytest.fixture
def small_cache(clock) -> LRUCacheStore[int]:
    """Cache holding two entries for one second."""
    return LRUCacheStore(CacheConfig(max_entries=2, ttl_seconds=1.0), clock=clock)


class TestEviction:
    """Test least-recently-used eviction."""

    def test_scenario_get_protects_key(self, small_cache: LRUCacheStore[int]):
        """set a; set b; get a; set c leaves {a, c}."""
        small_cache.set("a", 1)
        small_cache.set("b", 2)
        assert small_cache.get("a") == 1
        small_cache.set("c", 3)

        assert list(small_cache.keys()) == ["a", "c"]
        assert small_cache.get("b") is None

    def test_evicts_oldest_without_access(self, clock):
        """Capacity N plus one insert evicts exactly the first key."""
        cache = LRUCacheStore(CacheConfig(max_entries=3), clock=clock)
        for key in ["k1", "k2", "k3", "k4"]:
            cache.set(key, key)

        assert len(cache) == 3
        assert "k1" not in cache
        assert all(k in cache for k in ["k2", "k3", "k4"])

    def test_replace_does_not_evict(self, small_cache: LRUCacheStore[int]):
        """Overwriting an existing key at capacity keeps the other key."""
        small_cache.set("a", 1)
        small_cache.set("b", 2)
        small_cache.set("a", 10)

        assert len(small_cache) == 2
        assert small_cache.get("a") == 10
        assert small_cache.get("b") == 2

    def test_contains_does_not_promote(self, small_cache: LRUCacheStore[int]):
        """Membership checks leave the access order alone."""
        small_cache.set("a", 1)
        small_cache.set("b", 2)
        assert "a" in small_cache
        small_cache.set("c", 3)

        assert "a" not in small_cache


class TestExpiry:
    """Test TTL handling."""

    def test_hit_just_before_ttl(self, small_cache: LRUCacheStore[int], clock):
        small_cache.set("a", 1)
        clock.advance(0.999)
        assert small_cache.get("a") == 1

    def test_miss_after_ttl_deletes(self, small_cache: LRUCacheStore[int], clock):
        """An expired read is a miss and removes the entry."""
        small_cache.set("a", 1)
        clock.advance(1.001)

        assert small_cache.get("a") is None
        assert len(small_cache) == 0

    def test_access_does_not_extend_ttl(self, small_cache: LRUCacheStore[int], clock):
        small_cache.set("a", 1)
        clock.advance(0.6)
        small_cache.get("a")
        clock.advance(0.6)

        assert small_cache.get("a") is None

    def test_set_resets_ttl(self, small_cache: LRUCacheStore[int], clock):
        small_cache.set("a", 1)
        clock.advance(0.8)
        small_cache.set("a", 2)
        clock.advance(0.8)

        assert small_cache.get("a") == 2

    def test_prune_expired(self, clock):
        cache = LRUCacheStore(CacheConfig(max_entries=10, ttl_seconds=5), clock=clock)
        cache.set("old", 1)
        clock.advance(4)
        cache.set("new", 2)
        clock.advance(2)

        assert cache.prune_expired() == 1
        assert list(cache.keys()) == ["new"]


class TestCleanupTimer:
    """Test the periodic expiry sweep."""

    def test_sweep_removes_expired(self, clock, scheduler):
        cache = LRUCacheStore(
            CacheConfig(max_entries=10, ttl_seconds=30, cleanup_interval_seconds=60),
            clock=clock,
            scheduler=scheduler,
        )
        cache.set("a", 1)
        scheduler.advance(60)

        assert len(cache) == 0

    def test_sweep_rearms(self, clock, scheduler):
        cache = LRUCacheStore(
            CacheConfig(max_entries=10, ttl_seconds=30, cleanup_interval_seconds=60),
            clock=clock,
            scheduler=scheduler,
        )
        scheduler.advance(60)
        cache.set("b", 2)
        scheduler.advance(60)

        assert len(cache) == 0
        assert len(scheduler.pending) == 1

    def test_destroy_cancels_timer(self, clock, scheduler):
        cache = LRUCacheStore(CacheConfig(), clock=clock, scheduler=scheduler)
        cache.set("a", 1)
        cache.destroy()

        assert scheduler.pending == []
        assert len(cache) == 0

    def test_no_scheduler_no_timer(self, clock):
        cache = LRUCacheStore(CacheConfig(), clock=clock)
        assert cache._cleanup_timer is None


class TestStats:
    """Test statistics snapshots."""

    def test_stats_counts(self, clock):
        cache = LRUCacheStore(CacheConfig(max_entries=4, ttl_seconds=10), clock=clock)
        cache.set("a", 1)
        clock.advance(11)
        cache.set("b", 2)

        stats = cache.stats()
        assert stats.total_items == 2
        assert stats.valid_items == 1
        assert stats.expired_items == 1
        assert stats.max_entries == 4
        assert stats.fill_percentage == 50.0

    def test_stats_do_not_prune(self, clock):
        cache = LRUCacheStore(CacheConfig(ttl_seconds=1), clock=clock)
        cache.set("a", 1)
        clock.advance(2)
        cache.stats()

        assert len(cache) == 1


class TestDeletion:
    """Test delete, delete_prefix and clear."""

    def test_delete_idempotent(self, small_cache: LRUCacheStore[int]):
        small_cache.set("a", 1)
        assert small_cache.delete("a") is True
        assert small_cache.delete("a") is False

    def test_delete_prefix(self, clock):
        cache = LRUCacheStore(CacheConfig(max_entries=10), clock=clock)
        cache.set("listings:rent:page=1", 1)
        cache.set("listings:rent:page=2", 2)
        cache.set("listings:rental:page=1", 3)

        assert cache.delete_prefix("listings:rent:") == 2
        assert list(cache.keys()) == ["listings:rental:page=1"]

    def test_clear(self, small_cache: LRUCacheStore[int]):
        small_cache.set("a", 1)
        small_cache.clear()
        assert len(small_cache) == 0


class TestConfig:
    """Test cache configuration."""

    def test_defaults(self):
        config = CacheConfig()
        assert config.max_entries == 100
        assert config.ttl_seconds == 300
        assert config.cleanup_interval_seconds == 120

    def test_presets(self):
        assert LISTING_CACHE_CONFIG.max_entries == 50
        assert API_CACHE_CONFIG.max_entries == 200
        assert API_CACHE_CONFIG.ttl_seconds == 180

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_entries": 0}, {"ttl_seconds": 0}, {"cleanup_interval_seconds": -1}],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            CacheConfig(**kwargs)


class TestMakeCacheKey:
    """Test cache key construction."""

    def test_sorted_and_none_dropped(self):
        key = make_cache_key("page", {"page": 2, "category": "rent", "city": None})
        assert key == "page:category=rent&page=2"

    def test_no_params(self):
        assert make_cache_key("page") == "page"
        assert make_cache_key("page", {"city": None}) == "page"
