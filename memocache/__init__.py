"""
Memoization of function and method results with expiration policies and context invalidation.
"""
from .core import CacheEntry, CacheOptions, CachePolicy
from .storage import CacheStorage, MemoryStorage
from .hashing import get_hash, type_identity
from .policies import SharedCoroutine, is_expired
from .decorator import CachedMethod
from .manager import CacheManager
from .settings import CacheSettings

__all__ = [
    # Core types
    "CacheEntry",
    "CacheOptions",
    "CachePolicy",
    # Storage
    "CacheStorage",
    "MemoryStorage",
    # Hashing and expiration
    "get_hash",
    "type_identity",
    "is_expired",
    "SharedCoroutine",
    # Manager
    "CacheManager",
    "CachedMethod",
    "CacheSettings",
]
