"""Interface for response caching.

Defines the contract for storing, retrieving, and invalidating cached
upstream results with per-entry time-to-live expiry.
"""

import abc
from typing import Any, Optional

# Import relevant domain models
from ..models.common import CacheKey

class CacheService(abc.ABC):
    """Abstract Base Class for caching operations.

    Methods are synchronous on purpose: a lookup and the registration of an
    in-flight call must happen without yielding to the event loop.
    """

    @abc.abstractmethod
    def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves an item from the cache.

        Args:
            key: The cache key to retrieve.

        Returns:
            The cached item if found and not expired, otherwise None.
        """
        pass

    @abc.abstractmethod
    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        """Stores an item, overwriting any existing entry for the key.

        Args:
            key: The cache key to store the item under.
            value: The item to store.
            ttl: Time-to-live in seconds (uses the store default if None).
        """
        pass

    @abc.abstractmethod
    def delete(self, key: CacheKey) -> None:
        """Deletes an item from the cache if present."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Clears all items from the cache."""
        pass
