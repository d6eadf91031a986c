"""
SQL Cache — Cache Interface

Defines the abstract distributed-cache interface. Values are opaque byte
sequences; callers own serialization.
"""

from abc import ABC, abstractmethod
from typing import Any

from .expiration import EntryOptions


class CacheInterface(ABC):
    """
    Abstract base class for distributed cache implementations.

    Every coroutine has a blocking ``*_sync`` counterpart with the same
    semantics.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """
        Retrieve a value from the cache.

        Reading an entry with a sliding expiration extends its lifetime.

        Args:
            key: Cache key

        Returns:
            Cached value if found and not expired, None otherwise
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: bytes, options: EntryOptions | None = None) -> None:
        """
        Store a value in the cache, replacing any existing entry.

        Args:
            key: Cache key
            value: Value to cache
            options: Expiration options (None = cache default)
        """
        pass

    @abstractmethod
    async def refresh(self, key: str) -> None:
        """
        Extend the sliding expiration of an entry without returning its value.

        Args:
            key: Cache key
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key from the cache. Deleting a missing key is not an error.

        Args:
            key: Cache key to delete

        Returns:
            True if key was deleted, False if key didn't exist
        """
        pass

    @abstractmethod
    def get_sync(self, key: str) -> bytes | None:
        """Blocking variant of get()."""

    @abstractmethod
    def set_sync(self, key: str, value: bytes, options: EntryOptions | None = None) -> None:
        """Blocking variant of set()."""

    @abstractmethod
    def refresh_sync(self, key: str) -> None:
        """Blocking variant of refresh()."""

    @abstractmethod
    def delete_sync(self, key: str) -> bool:
        """Blocking variant of delete()."""

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics (hits, misses, sets, ...)
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close the cache and release resources.

        Should be called during graceful shutdown.
        """
        pass

    async def get_many(self, keys: list[str]) -> dict[str, bytes]:
        """
        Retrieve multiple values from the cache.

        Default implementation calls get() for each key.

        Args:
            keys: List of cache keys

        Returns:
            Dictionary mapping keys to values (missing keys are omitted)
        """
        result = {}
        for key in keys:
            value = await self.get(key)
            if value is not None:
                result[key] = value
        return result

    async def delete_many(self, keys: list[str]) -> int:
        """
        Delete multiple keys from the cache.

        Default implementation calls delete() for each key.

        Args:
            keys: List of cache keys to delete

        Returns:
            Number of keys that existed and were deleted
        """
        count = 0
        for key in keys:
            if await self.delete(key):
                count += 1
        return count
