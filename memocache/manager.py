"""
Cache orchestration: key hashing, expiration, policies, contexts and wrapping.
"""
import functools
import inspect
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Set, Tuple

from .core import CacheEntry, CacheOptions, CachePolicy
from .decorator import CachedMethod
from .hashing import get_hash, type_identity
from .policies import (
    as_shared_handle,
    failed,
    is_expired,
    is_pending,
    resolve_max_age,
    resolve_value,
)
from .settings import CacheSettings
from .storage import CacheStorage, MemoryStorage

logger = logging.getLogger("memocache.manager")

KeyBuilder = Callable[[Tuple[Any, ...], Dict[str, Any]], Any]


class CacheManager:
    """
    Manages cached call results with:
    - Deterministic hashing of composite keys
    - Fixed or sliding expiration, evaluated lazily on read
    - Context groups for bulk invalidation
    - Policies that can be overridden by key without touching declarations

    The manager does no locking. Share one instance per process (or per
    logical cache) and access it from a single thread of control.
    """

    def __init__(
        self,
        storage: Optional[CacheStorage] = None,
        settings: Optional[CacheSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache manager.

        Args:
            storage: Entry storage backend (in-memory by default)
            settings: Cache settings (loaded from the environment by default)
            clock: Returns the current time in seconds
        """
        self.storage = storage if storage is not None else MemoryStorage()
        self.settings = settings if settings is not None else CacheSettings()
        self._clock = clock

        self._policies: Dict[str, CachePolicy] = {}
        self._contexts: Dict[str, Set[str]] = {}

        self._default_policy: Optional[CachePolicy] = None
        if self.settings.default_max_age is not None:
            self._default_policy = CachePolicy(
                max_age=self.settings.default_max_age,
                sliding=self.settings.default_sliding,
            )

        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "rejected": 0,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Optional[CacheSettings] = None,
        storage: Optional[CacheStorage] = None,
    ) -> "CacheManager":
        """Create a manager from settings, reading the environment if none are given."""
        return cls(storage=storage, settings=settings or CacheSettings())

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------

    def set_cache_policy(self, policy_key: Any, policy: CachePolicy) -> None:
        """
        Set or override the policy registered under a key.

        Only future writes are affected; existing entries keep the policy
        they were written with.
        """
        self._policies[self._hash(policy_key)] = policy
        logger.info(f"Cache policy set for {policy_key!r}: {policy}")

    def remove_cache_policy(self, policy_key: Any) -> bool:
        """
        Drop a registered policy.

        Returns:
            True if a policy was registered under the key
        """
        return self._policies.pop(self._hash(policy_key), None) is not None

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def get_cache_item(self, key: Any) -> Optional[CacheEntry]:
        """
        Get an unexpired entry, refreshing its access time.

        Expired entries are removed on the way.

        Returns:
            The entry, or None on a miss
        """
        key_hash = self._hash(key)
        entry = self.storage.get(key_hash)
        if entry is None:
            self._stats["misses"] += 1
            logger.debug(f"CACHE MISS: {key_hash}")
            return None

        now = self._clock()
        if is_expired(entry, now):
            self._remove_hash(key_hash)
            self._stats["expired"] += 1
            self._stats["misses"] += 1
            logger.debug(f"CACHE EXPIRED: {key_hash} [age={entry.age(now):.3f}s]")
            return None

        entry.accessed = now
        self._stats["hits"] += 1
        logger.debug(f"CACHE HIT: {key_hash}")
        return entry

    def set_cache_item(self, entry: CacheEntry) -> None:
        """Store an entry and register it under its context, leaving any previous one."""
        key_hash = self._hash(entry.key)
        previous = self.storage.get(key_hash)
        if previous is not None and previous.context != entry.context:
            self._unregister(key_hash, previous.context)
        self.storage.set(key_hash, entry)
        if isinstance(entry.context, str):
            self._contexts.setdefault(entry.context, set()).add(key_hash)

    def has(self, key: Any) -> bool:
        """Check for an unexpired entry without touching or evicting it."""
        entry = self.storage.get(self._hash(key))
        return entry is not None and not is_expired(entry, self._clock())

    def get(self, key: Any, default: Any = None) -> Any:
        """Get a cached value, or default on a miss."""
        entry = self.get_cache_item(key)
        return entry.value if entry is not None else default

    def set(
        self,
        key: Any,
        value: Any,
        options: Optional[CacheOptions] = None,
        args: Optional[Tuple[Any, ...]] = None,
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Cache a value.

        Args:
            key: Key identifying the value
            value: Value to cache; futures, tasks and coroutines are cached as handles
            options: Context and policy options
            args: Positional arguments of the call that produced the value
            kwargs: Keyword arguments of the call that produced the value

        Returns:
            The value as cached. A coroutine comes back as a SharedCoroutine
            wrapping it, which is what later hits return as well.
        """
        now = self._clock()
        entry = CacheEntry(key=key, value=value, created=now, accessed=now)

        policy: Optional[CachePolicy] = None
        if options is not None:
            if options.context is not None:
                entry.context = resolve_value(options.context, args, kwargs)

            # A registered policy takes precedence over the inline one
            if options.policy_key is not None:
                entry.policy_key = resolve_value(options.policy_key, args, kwargs)
                policy = self._policies.get(self._hash(entry.policy_key))

            if policy is None:
                policy = options.policy

        if policy is None:
            policy = self._default_policy

        if policy is not None:
            max_age = resolve_max_age(policy, args, kwargs)
            if max_age == 0:
                logger.debug(f"Caching disabled by policy for {key!r}")
                return value
            entry.max_age = max_age
            entry.sliding = policy.sliding

        pending = is_pending(value)
        if pending:
            value = entry.value = as_shared_handle(value)

        self.set_cache_item(entry)

        # Attached after storing, so a handle that already failed is evicted too
        if pending and not (policy is not None and policy.keep_rejected_promise):
            value.add_done_callback(self._evict_on_failure(key))

        return value

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def remove(self, key: Any) -> bool:
        """
        Remove an entry.

        Returns:
            True if an entry existed under the key
        """
        removed = self._remove_hash(self._hash(key))
        if removed:
            logger.debug(f"Removed cache entry: {key!r}")
        return removed

    def remove_context(self, context: str) -> int:
        """
        Remove every entry tagged with a context.

        Returns:
            Number of entries removed
        """
        hashes = self._contexts.pop(context, None)
        if hashes is None:
            return 0

        removed = 0
        for key_hash in hashes:
            if self.storage.remove(key_hash) is not None:
                removed += 1
        logger.info(f"Removed {removed} cache entries in context '{context}'")
        return removed

    def clear(self) -> int:
        """
        Clear all entries and contexts. Registered policies are kept.

        Returns:
            Number of entries cleared
        """
        count = self.storage.count()
        self.storage.clear()
        self._contexts = {}
        logger.info(f"Cleared {count} cache entries")
        return count

    # -------------------------------------------------------------------------
    # Wrapping
    # -------------------------------------------------------------------------

    def wrap(
        self,
        target: Callable,
        options: Optional[CacheOptions] = None,
        get_key: Optional[KeyBuilder] = None,
    ) -> Callable:
        """
        Wrap a callable so its results are cached.

        Args:
            target: Callable to wrap
            options: Context and policy options for every write
            get_key: Builds the cache key from (args, kwargs). Defaults to
                the target's identity followed by its arguments.

        Returns:
            A callable with the same signature. When bound as a method the
            receiver arrives as the first positional argument and is passed
            on to the target unchanged. Coroutine functions stay coroutine
            functions, so the result can be passed to asyncio.run().

        The default key identifies the target by module and qualified name.
        Functions defined inside another function (closures made in a loop
        or a factory) share that name, so their identity also carries id()
        to keep each closure's entries apart.
        """
        identity = type_identity(target)
        if "<locals>" in identity:
            identity = f"{identity}#{id(target)}"

        def wrapper(*args, **kwargs):
            if not self.settings.enabled:
                return target(*args, **kwargs)

            if get_key is not None:
                key = get_key(args, kwargs)
            else:
                key = (identity, args, kwargs)

            entry = self.get_cache_item(key)
            if entry is not None:
                return entry.value

            value = target(*args, **kwargs)
            return self.set(key, value, options, args, kwargs)

        if inspect.iscoroutinefunction(target):
            # The cached handle is awaited here, inside the caller's event loop
            @functools.wraps(target)
            async def wrapped(*args, **kwargs):
                return await wrapper(*args, **kwargs)
        else:
            wrapped = functools.wraps(target)(wrapper)

        wrapped.cache_manager = self
        wrapped.cache_options = options
        return wrapped

    def cache(self, options: Optional[CacheOptions] = None, **fields: Any) -> Callable:
        """
        Decorator caching a method's results.

        Usage:
            class Repository:
                @manager.cache(policy=CachePolicy(max_age=60))
                def find(self, user_id):
                    ...

        Options may be passed as a CacheOptions instance, as keyword fields
        (context, policy_key, policy, extra_key_parts), or both, in which
        case the fields override the instance.
        """
        if fields:
            options = replace(options, **fields) if options else CacheOptions(**fields)

        def decorator(func: Callable) -> CachedMethod:
            return CachedMethod(self, func, options)

        return decorator

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (
            self._stats["hits"] / total_requests * 100 if total_requests > 0 else 0
        )
        return {
            "entries": self.storage.count(),
            "contexts": len(self._contexts),
            "policies": len(self._policies),
            "hits": self._stats["hits"],
            "misses": self._stats["misses"],
            "expired": self._stats["expired"],
            "rejected": self._stats["rejected"],
            "hit_rate_percent": round(hit_rate, 1),
        }

    def reset_stats(self) -> None:
        """Zero the hit, miss and eviction counters."""
        for name in self._stats:
            self._stats[name] = 0

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _hash(self, key: Any) -> str:
        return get_hash(key, self.settings.hash_algorithm)

    def _remove_hash(self, key_hash: str) -> bool:
        entry = self.storage.remove(key_hash)
        if entry is None:
            return False
        self._unregister(key_hash, entry.context)
        return True

    def _unregister(self, key_hash: str, context: Optional[str]) -> None:
        if isinstance(context, str) and context in self._contexts:
            self._contexts[context].discard(key_hash)

    def _evict_on_failure(self, key: Any) -> Callable[[Any], None]:
        """
        Build the completion callback that evicts a failed pending result.

        asyncio handles run the callback on their event loop. A
        concurrent.futures.Future runs it on the thread that completes the
        future, usually a pool worker, which then mutates storage and the
        context registry. The manager holds no locks, so hosts mixing thread
        pools with a shared manager must serialize access themselves.
        """
        key_hash = self._hash(key)

        def on_done(handle: Any) -> None:
            if not failed(handle):
                return
            # The key may have been rewritten since; leave newer entries alone
            entry = self.storage.get(key_hash)
            if entry is None or entry.value is not handle:
                return
            self._remove_hash(key_hash)
            self._stats["rejected"] += 1
            logger.warning(f"Pending result failed, evicted cache entry: {key_hash}")

        return on_done
