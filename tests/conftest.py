"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any import of throttlekit so the
global settings object is built from them.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("THROTTLE_STORE_BACKEND", "memory")
os.environ.setdefault("THROTTLE_KEY_PREFIX", "test")

import pytest

from throttlekit.adapters.store.in_memory import InMemoryTTLStore
from throttlekit.core.limiter import Limiter


class FakeClock:
    """Deterministic clock shared by the store and the limiter."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    # Aligned to a 60s window boundary
    return FakeClock(start=1_020.0)


@pytest.fixture
def store(clock: FakeClock) -> InMemoryTTLStore:
    return InMemoryTTLStore(clock=clock)


@pytest.fixture
def limiter(store: InMemoryTTLStore, clock: FakeClock) -> Limiter:
    return Limiter(store, clock=clock, key_prefix="test")
