"""Fixed-window counter strategy.

Each window is its own storage slot (the window start is part of the key),
so counts restart at every boundary without an explicit reset. A caller can
therefore get up to twice the threshold through across a boundary; that is
the accepted cost of this algorithm.
"""

from __future__ import annotations

import math

from throttlekit.adapters.rate_limit.base import AbstractStrategy
from throttlekit.core.keys import window_start
from throttlekit.core.options import ResolvedOptions, StrategyKind


class FixedWindowStrategy(AbstractStrategy):
    """Count actions within successive, non-overlapping intervals."""

    kind = StrategyKind.FIXED_WINDOW

    def counter(self, key: str, options: ResolvedOptions) -> int:
        raw = self._read(key)
        if raw is None:
            return 0
        return int(raw)

    def at_threshold(self, counter: float, options: ResolvedOptions) -> bool:
        return counter >= options.threshold

    def increment(self, key: str, options: ResolvedOptions, counter_before: float) -> None:
        # Expire after one interval so stale windows clean themselves up
        self._store.write(key, int(counter_before) + options.increment, options.interval)

    def retry_after(self, counter: float, options: ResolvedOptions) -> int:
        now = self._clock()
        window_end = window_start(now, options.interval) + options.interval
        return max(1, math.ceil(window_end - now))
