"""Counting strategies.

Both strategies share one contract (counter, at_threshold, increment,
current_count, reset) so the limiter can select one per call without
knowing how it counts.
"""

from throttlekit.adapters.rate_limit.base import AbstractStrategy
from throttlekit.adapters.rate_limit.fixed_window import FixedWindowStrategy
from throttlekit.adapters.rate_limit.leaky_bucket import LeakyBucketStrategy

__all__ = ["AbstractStrategy", "FixedWindowStrategy", "LeakyBucketStrategy"]
