"""
Core cache data structures.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union


@dataclass
class CachePolicy:
    """
    Rules for how long an entry stays cached.

    max_age is in seconds, or a callable taking the call's arguments and
    returning seconds. A max age of 0 disables caching for that write.
    """
    max_age: Union[float, Callable[..., float]]
    sliding: bool = False             # Age measured from last access
    keep_rejected_promise: bool = False  # Keep failed pending results until expiry


@dataclass
class CacheOptions:
    """Options that control caching behavior of a write or a wrapped callable."""
    context: Union[str, Callable[..., Optional[str]], None] = None
    policy_key: Any = None
    policy: Optional[CachePolicy] = None
    extra_key_parts: Optional[Callable[..., Any]] = None


@dataclass
class CacheEntry:
    """
    Represents a cached value with the policy snapshot taken when it was written.
    """
    key: Any
    value: Any
    created: float
    accessed: float
    context: Optional[str] = None
    policy_key: Any = None
    max_age: Optional[float] = None
    sliding: bool = False

    def age(self, now: float) -> float:
        """Seconds since the entry's age clock started."""
        start = self.accessed if self.sliding else self.created
        return now - start
