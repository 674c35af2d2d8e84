"""
Cache key hashing.

String keys are used as-is. Any other key is walked into a tagged, canonical
form, serialized as JSON (sorted mapping keys) and digested, so equal
composite keys always produce the same hash and distinct ones do not collide.

Examples:
    get_hash("users:42")                 -> "users:42"
    get_hash((Repo, "find", 42))         -> "3f1d...e9"
"""
import dataclasses
import hashlib
import math
from decimal import Decimal
from enum import Enum
from typing import Any, FrozenSet

import orjson
from pydantic import BaseModel

DEFAULT_HASH_ALGORITHM = "sha256"

_DUMP_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS

# orjson serializes integers in the signed and unsigned 64-bit ranges
_INT_MIN = -(2 ** 63)
_INT_MAX = 2 ** 64 - 1


def type_identity(obj: Any) -> str:
    """
    Stable identity of a class or function: its module and qualified name.

    Unlike id() it survives restarts, and unlike hashing the object's
    attributes it does not change when the class is mutated.
    """
    module = getattr(obj, "__module__", None) or ""
    name = getattr(obj, "__qualname__", None) or getattr(obj, "__name__", None)
    if name is None:
        name = type(obj).__qualname__
    return f"{module}.{name}" if module else name


def _dump(obj: Any) -> bytes:
    return orjson.dumps(obj, default=_normalize, option=_DUMP_OPTIONS)


def _canonical(key: Any) -> bytes:
    return _dump(_prepare(key, frozenset()))


def _prepare(obj: Any, path: FrozenSet[int]) -> Any:
    """
    Rewrite a key into values orjson serializes without losing information.

    orjson writes NaN and infinities as null and enum members as their
    values, and rejects integers wider than 64 bits, so those are tagged
    here. path holds the ids of the containers being walked, to detect
    circular keys.
    """
    if obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, type) or (callable(obj) and hasattr(obj, "__qualname__")):
        return {"__identity__": type_identity(obj)}
    if isinstance(obj, Enum):
        return {
            "__enum__": type_identity(type(obj)),
            "value": _prepare(obj.value, path),
        }
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, int):
        if _INT_MIN <= obj <= _INT_MAX:
            return int(obj)
        return {"__int__": str(obj)}
    if isinstance(obj, float):
        if math.isfinite(obj):
            return float(obj)
        return {"__float__": repr(obj)}

    if id(obj) in path:
        raise TypeError(f"Cache key contains a circular reference: {type(obj).__name__}")
    path = path | {id(obj)}

    if isinstance(obj, dict):
        return {key: _prepare(value, path) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_prepare(item, path) for item in obj]
    if isinstance(obj, (set, frozenset)):
        return {"__set__": sorted((_prepare(item, path) for item in obj), key=_dump)}
    if isinstance(obj, BaseModel):
        return {
            "__model__": type_identity(type(obj)),
            "fields": _prepare(obj.model_dump(), path),
        }
    if dataclasses.is_dataclass(obj):
        fields = {field.name: getattr(obj, field.name) for field in dataclasses.fields(obj)}
        return {
            "__dataclass__": type_identity(type(obj)),
            "fields": _prepare(fields, path),
        }
    if hasattr(obj, "__dict__"):
        return {"__object__": type_identity(type(obj)), "state": _prepare(vars(obj), path)}
    return obj


def _normalize(obj: Any) -> Any:
    """Map leaf values orjson cannot serialize natively onto a deterministic form."""
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"__bytes__": bytes(obj).hex()}
    if isinstance(obj, Decimal):
        return {"__decimal__": str(obj)}
    return {"__repr__": repr(obj)}


def get_hash(key: Any, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """
    Calculate the hash of a cache key.

    Args:
        key: Any key. Strings are returned unchanged.
        algorithm: Name of a hashlib algorithm used for non-string keys

    Returns:
        The hash string used to address storage

    Raises:
        ValueError: If the algorithm is not supported by hashlib
        TypeError: If the key cannot be serialized (e.g. circular references)
    """
    if isinstance(key, str):
        return key

    digest = hashlib.new(algorithm)
    try:
        digest.update(_canonical(key))
    except orjson.JSONEncodeError as e:
        raise TypeError(f"Cache key is not hashable: {e}") from e
    return digest.hexdigest()
