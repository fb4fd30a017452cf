"""Interfaces for caching mechanisms.

Defines the contract for storing, retrieving and invalidating cached data,
and the storage collaborator a persistent cache delegates writes to.
"""

import abc
from typing import Any, Awaitable, Callable, Iterable, List, Optional

# Import relevant domain models
from ..models.common import CacheKey, CacheStats, CacheTag

class CacheService(abc.ABC):
    """Abstract Base Class for caching operations.

    All operations except :meth:`preload` are synchronous and never suspend.
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
    def set(
        self,
        key: CacheKey,
        data: Any,
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> None:
        """Stores an item in the cache.

        Args:
            key: The cache key to store the item under.
            data: The item to store.
            ttl: Time-to-live in seconds (uses the store default if None).
            tags: Labels used for bulk invalidation.
        """
        pass

    @abc.abstractmethod
    def has(self, key: CacheKey) -> bool:
        """Checks whether a fresh entry exists without touching statistics."""
        pass

    @abc.abstractmethod
    def delete(self, key: CacheKey) -> bool:
        """Deletes an item, returning whether something was removed."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Clears all items and resets hit/miss counters."""
        pass

    @abc.abstractmethod
    def clear_by_tags(self, tags: Iterable[CacheTag]) -> int:
        """Removes every entry carrying at least one of the given tags.

        Returns:
            The number of removed entries.
        """
        pass

    @abc.abstractmethod
    def keys(self, tag: Optional[CacheTag] = None) -> List[str]:
        """Lists keys, optionally restricted to those carrying ``tag``."""
        pass

    @abc.abstractmethod
    def get_stats(self) -> CacheStats:
        """Returns occupancy and hit/miss statistics."""
        pass

    @abc.abstractmethod
    async def preload(
        self,
        key: CacheKey,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Any:
        """Returns the cached value or loads, stores and returns it."""
        pass


class StorageAdapter(abc.ABC):
    """Synchronous key/value storage a persistent cache writes through to."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        pass

    @abc.abstractmethod
    def keys(self) -> List[str]:
        """Lists the stored keys (without any adapter prefix)."""
        pass
