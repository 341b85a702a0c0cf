"""Counter store interface.

The limiter depends on this abstraction only. No transactional or
compare-and-swap primitive is assumed: strategies read, decide and write as
separate calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class AbstractStore(ABC):
    """Key/value store with per-entry expiry."""

    @abstractmethod
    def read(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent or expired."""
        raise NotImplementedError

    @abstractmethod
    def write(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store a value that expires ``ttl_seconds`` from now."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; deleting an absent key is not an error."""
        raise NotImplementedError
