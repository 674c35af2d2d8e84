"""
Expiration rules and helpers for evaluating option values.
"""
import asyncio
import concurrent.futures
import functools
import inspect
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core import CacheEntry, CachePolicy


def is_expired(entry: CacheEntry, now: float) -> bool:
    """
    Check whether an entry has expired.

    An entry without a max age (None or 0) never expires. Otherwise its age is
    measured from the last access for sliding entries and from creation for
    the rest, and it expires only once the age is strictly greater than max_age.
    """
    if not entry.max_age:
        return False
    return entry.age(now) > entry.max_age


def resolve_value(
    value: Any,
    args: Optional[Tuple[Any, ...]] = None,
    kwargs: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Evaluate an option that is either a plain value or a callable of the call arguments.

    Callables get the call's positional and keyword arguments, or nothing
    when the write has no call arguments. Classes are values, not factories,
    so a key like (Repository, "find") or Repository itself is kept as-is.
    """
    if not callable(value) or isinstance(value, type):
        return value
    return value(*(args or ()), **(kwargs or {}))


def resolve_max_age(
    policy: CachePolicy,
    args: Optional[Tuple[Any, ...]] = None,
    kwargs: Optional[Dict[str, Any]] = None,
) -> float:
    """Resolve a policy's max age in seconds for a specific call."""
    return resolve_value(policy.max_age, args, kwargs)


class SharedCoroutine:
    """
    Awaitable that runs a coroutine once and shares the outcome with every awaiter.

    The task is only created on the first await, inside the awaiting event
    loop, so a cached coroutine is never bound to a loop that is not running.
    """

    def __init__(self, coro: Any):
        self._coro = coro
        self._task: Optional[asyncio.Task] = None
        self._callbacks: List[Callable[[Any], None]] = []

    def __await__(self):
        return self._start().__await__()

    def _start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.ensure_future(self._coro)
            for callback in self._callbacks:
                self._task.add_done_callback(functools.partial(self._notify, callback))
            self._callbacks = []
        return self._task

    def _notify(self, callback: Callable[[Any], None], task: asyncio.Task) -> None:
        callback(self)

    def add_done_callback(self, callback: Callable[[Any], None]) -> None:
        """Call callback(self) once the underlying task completes."""
        if self._task is None:
            self._callbacks.append(callback)
        else:
            self._task.add_done_callback(functools.partial(self._notify, callback))

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    def exception(self) -> Optional[BaseException]:
        return self._task.exception() if self._task is not None else None


def is_pending(value: Any) -> bool:
    """True for result handles that complete later (futures, tasks, coroutines)."""
    return (
        isinstance(value, (asyncio.Future, concurrent.futures.Future, SharedCoroutine))
        or inspect.iscoroutine(value)
    )


def as_shared_handle(value: Any) -> Any:
    """
    Wrap a coroutine so every cache hit can await the same result.

    A coroutine can only be awaited once, a SharedCoroutine any number of
    times. Other values are returned unchanged.
    """
    if inspect.iscoroutine(value):
        return SharedCoroutine(value)
    return value


def failed(handle: Any) -> bool:
    """Whether a completed pending result ended in cancellation or an exception."""
    if handle.cancelled():
        return True
    return handle.exception() is not None
