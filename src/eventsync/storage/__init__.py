"""Local cache abstraction for the event collection."""

from eventsync.storage.cache import (
    DEFAULT_CACHE_KEY,
    CacheError,
    JsonFileCache,
    LocalCache,
    MemoryCache,
)

__all__ = ["DEFAULT_CACHE_KEY", "CacheError", "JsonFileCache", "LocalCache", "MemoryCache"]
