"""In-memory LRU cache with per-entry TTL.

This module provides the bounded memoizing store that sits in front of the
catalog service, enabling:
- Reduced API calls through TTL-based caching
- Bounded memory through least-recently-used eviction
- Periodic sweeping of expired entries, independent of access pattern
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

from ..scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheConfig:
    """Sizing and expiry settings of one cache instance."""

    max_entries: int = 100
    ttl_seconds: float = 5 * 60
    cleanup_interval_seconds: float = 2 * 60

    def __post_init__(self) -> None:
        if self.max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if self.cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be positive")


# Presets used by the mobile client
LISTING_CACHE_CONFIG = CacheConfig(max_entries=50, ttl_seconds=300, cleanup_interval_seconds=120)
API_CACHE_CONFIG = CacheConfig(max_entries=200, ttl_seconds=180, cleanup_interval_seconds=60)


@dataclass
class CacheEntry(Generic[V]):
    """Cached value with access bookkeeping."""

    value: V
    created_at: float
    last_accessed_at: float
    access_count: int = 1

    def is_expired(self, now: float, ttl: float) -> bool:
        """Check if the entry is older than ``ttl``."""
        return now - self.created_at > ttl


@dataclass(frozen=True)
class CacheStats:
    """Diagnostic snapshot of a cache."""

    total_items: int
    valid_items: int
    expired_items: int
    max_entries: int
    fill_percentage: float


def make_cache_key(base_key: str, params: Optional[dict[str, Any]] = None) -> str:
    """Build a deterministic cache key from a base name and parameters.

    None values are dropped and parameters are sorted by name, so the same
    logical query always maps to the same key.

    Example:
        make_cache_key("page", {"page": 2, "category": "rent"})
        # -> "page:category=rent&page=2"
    """
    if not params:
        return base_key
    parts = [
        f"{name}={params[name]}"
        for name in sorted(params)
        if params[name] is not None
    ]
    return f"{base_key}:{'&'.join(parts)}" if parts else base_key


class LRUCacheStore(Generic[V]):
    """Bounded key-value store with TTL expiry and LRU eviction.

    Entries are kept in access order (most recently used last). Inserting a
    new key into a full store evicts the head. Expired entries are dropped
    lazily on read and actively by a periodic sweep when a scheduler is given.

    Example:
        cache = LRUCacheStore(CacheConfig(max_entries=2, ttl_seconds=1.0))
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")      # refreshes "a"
        cache.set("c", 3)   # evicts "b"

        stats = cache.stats()
        cache.destroy()
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Optional[Scheduler] = None,
        name: str = "cache",
    ):
        """Initialize the cache.

        Args:
            config: Sizing and expiry settings (defaults to CacheConfig())
            clock: Monotonic time source in seconds
            scheduler: If given, arms the periodic expiry sweep
            name: Label used in log messages
        """
        self.config = config or CacheConfig()
        self.name = name
        self._clock = clock
        self._scheduler = scheduler
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._cleanup_timer: Optional[TimerHandle] = None
        self._destroyed = False

        if scheduler is not None:
            self._arm_cleanup_timer(scheduler)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        """TTL-aware membership test that does not touch access order."""
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock(), self.config.ttl_seconds)

    def keys(self) -> Iterator[str]:
        """Keys from least to most recently used."""
        return iter(list(self._entries))

    def set(self, key: str, value: V) -> None:
        """Insert or replace a value, evicting the LRU entry when full."""
        now = self._clock()

        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.config.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"[{self.name}] Evicted least recently used key: {evicted}")

        self._entries[key] = CacheEntry(value=value, created_at=now, last_accessed_at=now)

    def get(self, key: str) -> Optional[V]:
        """Get a value if present and not expired.

        A hit refreshes the entry's recency; an expired entry is deleted.

        Returns:
            Cached value, or None on a miss
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if entry.is_expired(now, self.config.ttl_seconds):
            del self._entries[key]
            logger.debug(f"[{self.name}] Expired on read: {key}")
            return None

        entry.access_count += 1
        entry.last_accessed_at = now
        self._entries.move_to_end(key)
        return entry.value

    def peek_entry(self, key: str) -> Optional[CacheEntry[V]]:
        """Return the raw entry without refreshing it or checking expiry."""
        return self._entries.get(key)

    def delete(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if the key was present
        """
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``.

        Returns:
            Number of entries deleted
        """
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def prune_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries deleted
        """
        now = self._clock()
        ttl = self.config.ttl_seconds
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, ttl)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug(f"[{self.name}] Pruned {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> CacheStats:
        """Compute a statistics snapshot from the current entries."""
        now = self._clock()
        ttl = self.config.ttl_seconds
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now, ttl))
        total = len(self._entries)

        return CacheStats(
            total_items=total,
            valid_items=total - expired,
            expired_items=expired,
            max_entries=self.config.max_entries,
            fill_percentage=round(total / self.config.max_entries * 100, 2),
        )

    def destroy(self) -> None:
        """Stop the expiry sweep and clear the store."""
        self._destroyed = True
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None
        self.clear()

    def _arm_cleanup_timer(self, scheduler: Scheduler) -> None:
        self._cleanup_timer = scheduler.call_later(
            self.config.cleanup_interval_seconds, self._on_cleanup_timer
        )

    def _on_cleanup_timer(self) -> None:
        self._cleanup_timer = None
        if self._destroyed or self._scheduler is None:
            return
        self.prune_expired()
        self._arm_cleanup_timer(self._scheduler)
