"""In-memory TTL store for single-process deployments and tests.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from throttlekit.adapters.store.base import AbstractStore

logger = logging.getLogger(__name__)


@dataclass
class StoreItem:
    """Container for a stored value with expiration metadata."""

    value: Any
    expires_at: float


class InMemoryTTLStore(AbstractStore):
    """Thread-safe, dict-backed store with per-entry TTL and LRU eviction.

    Attributes:
        max_entries: Maximum number of live entries (None for unlimited).
    """

    def __init__(
        self,
        max_entries: int | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self._max_entries = max_entries
        self._clock = clock
        self._items: OrderedDict[str, StoreItem] = OrderedDict()
        # Earliest expiry among stored entries; writes sweep once it has passed
        self._next_expiry = math.inf
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryTTLStore(max_entries={self._max_entries}, size={len(self._items)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def read(self, key: str) -> Any | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                self._misses += 1
                return None

            if self._clock() >= item.expires_at:
                self._evict_single(key)
                self._misses += 1
                logger.debug("store.expired", extra={"store_key": key[-16:]})
                return None

            self._hits += 1
            self._items.move_to_end(key)
            return item.value

    def write(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        with self._lock:
            now = self._clock()
            if now >= self._next_expiry:
                # Expired entries go first, before any live LRU ones
                self._evict_expired_locked(now)

            expires_at = now + ttl_seconds
            self._items[key] = StoreItem(value=value, expires_at=expires_at)
            self._items.move_to_end(key)
            self._next_expiry = min(self._next_expiry, expires_at)
            self._evict_if_over_capacity_locked()

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        """Remove all entries and reset counters."""

        with self._lock:
            self._items.clear()
            self._next_expiry = math.inf
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight store metrics without exposing values."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._evictions += 1

    def _evict_expired_locked(self, now: float) -> None:
        expired_keys = [k for k, item in self._items.items() if item.expires_at <= now]
        for key in expired_keys:
            self._evict_single(key)
        self._next_expiry = min((item.expires_at for item in self._items.values()), default=math.inf)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._items) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            key, _ = self._items.popitem(last=False)
            self._evictions += 1
            logger.debug("store.evicted", extra={"store_key": key[-16:], "reason": "capacity"})
