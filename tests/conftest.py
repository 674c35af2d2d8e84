"""
Shared fixtures: a manager driven by a manually advanced clock.
"""
import pytest

from memocache import CacheManager, CacheSettings, MemoryStorage


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """A manually advanced clock."""
    return FakeClock()


@pytest.fixture
def settings():
    """Default settings, isolated from the environment and .env files."""
    return CacheSettings(_env_file=None)


@pytest.fixture
def manager(clock, settings):
    """A cache manager with in-memory storage and the fake clock."""
    return CacheManager(storage=MemoryStorage(), settings=settings, clock=clock)
