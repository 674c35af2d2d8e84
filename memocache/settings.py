"""Configuration management using pydantic-settings."""
import hashlib
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Cache settings loaded from MEMOCACHE_* environment variables."""

    # Wrapped callables call straight through when disabled
    enabled: bool = True

    # Default policy, applied only when no policy resolves for a write.
    # None keeps entries until removed.
    default_max_age: Optional[float] = None
    default_sliding: bool = False

    # Digest used for non-string keys
    hash_algorithm: str = "sha256"

    model_config = SettingsConfigDict(
        env_prefix="MEMOCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("hash_algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        if value not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {value}")
        return value

    @field_validator("default_max_age")
    @classmethod
    def _check_max_age(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value < 0:
            raise ValueError("default_max_age must not be negative")
        return value
