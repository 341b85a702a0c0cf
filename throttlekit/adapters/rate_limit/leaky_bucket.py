"""Leaky-bucket counter strategy.

The bucket fills by ``increment`` units per admitted action and drains
continuously at ``threshold / interval`` units per second. Actions are
admitted while the drained level is below ``burst_rate``, which allows short
bursts above the sustained rate.

Only the (level, last_update) pair is stored. Decay is recomputed on every
read and persisted only when the next action is admitted.
"""

from __future__ import annotations

import math

from throttlekit.adapters.rate_limit.base import AbstractStrategy
from throttlekit.core.options import ResolvedOptions, StrategyKind
from throttlekit.schemas.bucket import BucketState


class LeakyBucketStrategy(AbstractStrategy):
    """Continuously decaying counter bounded by a burst capacity."""

    kind = StrategyKind.LEAKY_BUCKET

    def _effective_level(self, state: BucketState, options: ResolvedOptions, now: float) -> float:
        # Clock skew between writers must not refill the bucket
        elapsed = max(0.0, now - state.last_update)
        return max(0.0, state.level - elapsed * options.drip_rate)

    def counter(self, key: str, options: ResolvedOptions) -> float:
        raw = self._read(key)
        if raw is None:
            return 0.0
        state = BucketState.model_validate(raw)
        return self._effective_level(state, options, self._clock())

    def at_threshold(self, counter: float, options: ResolvedOptions) -> bool:
        return counter >= options.burst_rate

    def increment(self, key: str, options: ResolvedOptions, counter_before: float) -> None:
        level = float(counter_before) + options.increment
        state = BucketState(level=level, last_update=self._clock())
        # Long enough for the bucket to drain completely before the store drops it
        ttl = max(level, options.burst_rate) / options.drip_rate
        self._store.write(key, state.model_dump(), ttl)

    def retry_after(self, counter: float, options: ResolvedOptions) -> int:
        # Admission needs the level strictly below burst_rate
        seconds = (counter - options.burst_rate) / options.drip_rate
        return max(1, math.floor(seconds) + 1)
