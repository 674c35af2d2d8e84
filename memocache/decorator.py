"""Method caching decorator.

Usage:
    manager = CacheManager()

    class Repository:
        @manager.cache(context=lambda self, user_id: f"user:{user_id}")
        def find(self, user_id):
            ...

Keys are (Repository, "find", *args) so instances share results for equal
arguments, and the default policy key (Repository, "find") lets callers
override the method's policy with manager.set_cache_policy().
"""
import functools
import logging
import types
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from .core import CacheOptions

if TYPE_CHECKING:
    from .manager import CacheManager

logger = logging.getLogger("memocache.decorator")


class CachedMethod:
    """
    Descriptor wrapping a method with a cache manager.

    The owning class is only known once the class body has been executed,
    so the actual wrapping happens in __set_name__.
    """

    def __init__(
        self,
        manager: "CacheManager",
        func: Callable,
        options: Optional[CacheOptions] = None,
    ):
        self.manager = manager
        self.options = options or CacheOptions()
        self.owner: Optional[type] = None
        self.name: Optional[str] = None
        self._func = func
        self._wrapped: Optional[Callable] = None
        functools.update_wrapper(self, func)

    def __set_name__(self, owner: type, name: str) -> None:
        options = self.options
        if options.policy_key is None:
            options = replace(options, policy_key=(owner, name))

        self.owner = owner
        self.name = name
        self.options = options
        self._wrapped = self.manager.wrap(self._func, options, self._key_builder())
        logger.debug(f"Caching enabled for {owner.__qualname__}.{name}")

    def _key_builder(self) -> Callable[[Tuple[Any, ...], Dict[str, Any]], Any]:
        owner, name = self.owner, self.name
        extra_key_parts = self.options.extra_key_parts

        def get_key(args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Tuple[Any, ...]:
            # args[0] is the receiver; it only enters the key through extra parts
            key = [owner, name, *args[1:]]
            if kwargs:
                key.append(kwargs)
            if extra_key_parts is not None:
                extra = extra_key_parts(*args, **kwargs)
                if isinstance(extra, (tuple, list)):
                    key.extend(extra)
                else:
                    key.append(extra)
            return tuple(key)

        return get_key

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        return types.MethodType(self, instance)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if self._wrapped is None:
            raise TypeError(
                f"{self._func.__qualname__} must be decorated inside a class body"
            )
        return self._wrapped(*args, **kwargs)
