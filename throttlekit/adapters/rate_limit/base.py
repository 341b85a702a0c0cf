"""Strategy interface shared by the counting algorithms.

Concurrency:
    ``counter`` and ``increment`` are separate store calls. Two concurrent
    callers can read the same value and both be admitted, so under contention
    a handle may admit slightly more than its threshold. The limiter accepts
    this in exchange for working over any read/write/expire store.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from throttlekit.adapters.store.base import AbstractStore
from throttlekit.core.keys import build_key
from throttlekit.core.options import ResolvedOptions, StrategyKind

logger = logging.getLogger(__name__)


class AbstractStrategy(ABC):
    """Base class for counting strategies.

    Args:
        store: Counter store.
        clock: Time source returning UNIX time in seconds.
        key_prefix: Namespace for storage keys.
    """

    kind: StrategyKind

    def __init__(
        self,
        store: AbstractStore,
        *,
        clock: Callable[[], float] = time.time,
        key_prefix: str = "throttlekit",
    ) -> None:
        self._store = store
        self._clock = clock
        self._key_prefix = key_prefix

    def build_key(self, options: ResolvedOptions) -> str:
        """Derive the storage key for the call described by ``options``."""

        return build_key(
            options.handle,
            options.key,
            options.interval,
            self.kind is StrategyKind.FIXED_WINDOW,
            self._clock(),
            prefix=self._key_prefix,
        )

    def _read(self, key: str) -> Any | None:
        """Read a raw record; absence (None or KeyError) yields None."""

        try:
            return self._store.read(key)
        except KeyError:
            return None

    @abstractmethod
    def counter(self, key: str, options: ResolvedOptions) -> float:
        """Current counter value used for the admission decision."""

    @abstractmethod
    def at_threshold(self, counter: float, options: ResolvedOptions) -> bool:
        """Whether ``counter`` means the next action must be throttled."""

    @abstractmethod
    def increment(self, key: str, options: ResolvedOptions, counter_before: float) -> None:
        """Record an admitted action on top of ``counter_before``."""

    @abstractmethod
    def retry_after(self, counter: float, options: ResolvedOptions) -> int:
        """Whole seconds until an action would be admitted again (at least 1)."""

    def current_count(self, key: str, options: ResolvedOptions) -> float:
        """Read-only view of the counter for external queries."""

        return self.counter(key, options)

    def reset(self, key: str) -> None:
        """Clear the counter stored under ``key``."""

        self._store.delete(key)
        logger.debug("strategy.reset", extra={"strategy": self.kind.value})
