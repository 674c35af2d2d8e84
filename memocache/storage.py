"""
Storage backends for cache entries.

The manager only talks to storage through CacheStorage, addressing entries
by their pre-computed hash. Alternative backends subclass it without any
change to the manager.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .core import CacheEntry


class CacheStorage(ABC):
    """
    Abstract base class for cache entry storage.

    Implementations hold entries as-is. Expiration is the manager's concern,
    storage never inspects entry metadata.
    """

    @abstractmethod
    def get(self, key_hash: str) -> Optional[CacheEntry]:
        """
        Get an entry.

        Args:
            key_hash: Hash identifying the entry

        Returns:
            The entry if present, otherwise None
        """
        pass

    @abstractmethod
    def set(self, key_hash: str, entry: CacheEntry) -> None:
        """Save an entry, replacing any entry with the same hash."""
        pass

    @abstractmethod
    def has(self, key_hash: str) -> bool:
        """Check whether an entry with the hash is stored."""
        pass

    @abstractmethod
    def remove(self, key_hash: str) -> Optional[CacheEntry]:
        """
        Remove an entry.

        Returns:
            The removed entry, or None if nothing was stored under the hash
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of stored entries, expired or not."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all entries."""
        pass


class MemoryStorage(CacheStorage):
    """In-process storage backed by a dict."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key_hash: str) -> Optional[CacheEntry]:
        return self._entries.get(key_hash)

    def set(self, key_hash: str, entry: CacheEntry) -> None:
        self._entries[key_hash] = entry

    def has(self, key_hash: str) -> bool:
        return key_hash in self._entries

    def remove(self, key_hash: str) -> Optional[CacheEntry]:
        return self._entries.pop(key_hash, None)

    def count(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
