"""Storage modules for listing data and client state.

This package provides the in-memory LRU cache that memoizes catalog pages
and the small persistent key-value store used for version tracking and
favorites.
"""

from .cache import (
    API_CACHE_CONFIG,
    LISTING_CACHE_CONFIG,
    CacheConfig,
    CacheEntry,
    CacheStats,
    LRUCacheStore,
    make_cache_key,
)
from .favorites import FavoritesStore
from .kvstore import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore

__all__ = [
    "API_CACHE_CONFIG",
    "LISTING_CACHE_CONFIG",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "FavoritesStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LRUCacheStore",
    "MemoryKeyValueStore",
    "make_cache_key",
]
