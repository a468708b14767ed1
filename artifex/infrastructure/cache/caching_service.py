"""Concrete implementations of the response cache.

Stores upstream results under a cache key with a per-entry time-to-live.
InMemoryCacheStore lives as long as the process and removes expired entries
lazily, when a lookup finds them. DiskCacheStore keeps entries in a
diskcache directory so successive CLI invocations share them.
"""

import hashlib
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import diskcache

# Domain Layer Imports
from artifex.domain.interfaces.cache import CacheService
from artifex.domain.models.common import CacheKey

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60  # 5 minutes
KEY_SEPARATOR = ":"
MAX_KEY_PART_LENGTH = 200

@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    key: CacheKey
    value: Any
    expires_at: float # Clock reading after which the entry is stale


def create_cache_key(prefix: str, *parts: Any) -> CacheKey:
    """Builds a cache key from a prefix and the parts identifying the operation.

    Parts longer than MAX_KEY_PART_LENGTH (file contents, large trees) are
    replaced by their SHA-256 digest so keys stay short but distinct.
    """
    normalized = []
    for part in parts:
        text = "" if part is None else str(part)
        if len(text) > MAX_KEY_PART_LENGTH:
            text = hashlib.sha256(text.encode("utf-8")).hexdigest()
        normalized.append(text)
    return CacheKey(KEY_SEPARATOR.join([prefix, *normalized]))


class InMemoryCacheStore(CacheService):
    """Key/value store with per-entry expiry.

    Not thread-safe: intended for a single asyncio event loop, where no two
    calls can interleave inside `get` or `set`.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_items: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the cache store.

        Args:
            default_ttl: TTL in seconds used when `set` is called without one.
            max_items: Optional capacity bound; None keeps the store unbounded.
            clock: Monotonic time source, injectable for tests.
        """
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self.default_ttl = default_ttl
        self.max_items = max_items
        self._clock = clock
        logger.info(f"InMemoryCacheStore initialized (ttl={default_ttl}s, max_items={max_items or 'unbounded'})")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not self._is_expired(entry)

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() > entry.expires_at

    def _enforce_capacity(self) -> None:
        """Evicts the oldest-inserted entries while over `max_items`."""
        if self.max_items is None:
            return
        while len(self._entries) > self.max_items:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
            logger.debug(f"Evicted cache entry over capacity: key={oldest_key}")

    # --- CacheService Interface Implementation ---

    def get(self, key: CacheKey) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss for key: {key}")
            return None
        if self._is_expired(entry):
            del self._entries[key]
            logger.debug(f"Cache entry expired for key: {key}. Removed.")
            return None
        logger.debug(f"Cache hit for key: {key}")
        return entry.value

    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        effective_ttl = self.default_ttl if ttl is None else ttl
        # Re-insert so capacity eviction sees the newest write last.
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + effective_ttl)
        self._enforce_capacity()
        logger.debug(f"Stored item in cache: key={key}, ttl={effective_ttl}s")

    def delete(self, key: CacheKey) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug(f"Deleted item from cache: key={key}")

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared response cache ({count} entries).")


DISK_CACHE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


class DiskCacheStore(CacheService):
    """Response cache persisted in a diskcache directory.

    Entries expire by wall-clock time, so an entry written by one CLI run is
    served to the next until its TTL passes. diskcache culls expired entries
    while writing; there is no background sweep. Disk failures are logged
    and treated as misses so a broken cache never fails a command.
    """

    def __init__(self, directory: Union[str, Path], default_ttl: float = DEFAULT_TTL_SECONDS):
        """Opens (or creates) the cache directory.

        Args:
            directory: Directory holding the diskcache database.
            default_ttl: TTL in seconds used when `set` is called without one.

        Raises:
            OSError: The directory cannot be created.
            sqlite3.Error: The cache database cannot be opened.
        """
        self.default_ttl = default_ttl
        self._cache = diskcache.Cache(str(directory))
        logger.info(f"DiskCacheStore initialized at {self._cache.directory} (ttl={default_ttl}s)")

    @property
    def directory(self) -> str:
        return self._cache.directory

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: object) -> bool:
        try:
            return key in self._cache
        except DISK_CACHE_ERRORS as e:
            logger.warning(f"Disk cache lookup failed for key {key}: {e}")
            return False

    def get(self, key: CacheKey) -> Optional[Any]:
        try:
            value = self._cache.get(key, default=None, retry=True)
        except DISK_CACHE_ERRORS as e:
            logger.warning(f"Disk cache read failed for key {key}: {e}")
            return None
        logger.debug(f"Cache {'miss' if value is None else 'hit'} for key: {key}")
        return value

    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        effective_ttl = self.default_ttl if ttl is None else ttl
        try:
            self._cache.set(key, value, expire=effective_ttl, retry=True)
            logger.debug(f"Stored item in disk cache: key={key}, ttl={effective_ttl}s")
        except DISK_CACHE_ERRORS as e:
            logger.warning(f"Disk cache write failed for key {key}: {e}")

    def delete(self, key: CacheKey) -> None:
        try:
            if self._cache.delete(key, retry=True):
                logger.debug(f"Deleted item from disk cache: key={key}")
        except DISK_CACHE_ERRORS as e:
            logger.warning(f"Disk cache delete failed for key {key}: {e}")

    def clear(self) -> None:
        count = self._cache.clear(retry=True)
        logger.info(f"Cleared response cache at {self.directory} ({count} entries).")

    def close(self) -> None:
        self._cache.close()
