"""
throttlekit - rate limiting decisions over a pluggable counter store.

Register a policy per protected operation ("handle"), then ask the limiter
whether an action for a given request key should be allowed or throttled.
Two counting strategies are available: a fixed-window counter (default) and
a leaky bucket (when the policy has a burst_rate).

Example:
    >>> from throttlekit import InMemoryTTLStore, Limiter, RateLimited
    >>>
    >>> limiter = Limiter(InMemoryTTLStore())
    >>> limiter.register_policy("login", threshold=5, interval=300)
    >>> limiter.register_policy("api", threshold=10, interval=60, burst_rate=15)
    >>>
    >>> if limiter.throttle("login", [account_id, client_ip]):
    ...     deny()
    >>>
    >>> try:
    ...     limiter.throttle_or_fail("api", api_key)
    ... except RateLimited as exc:
    ...     backoff(exc.retry_after)
    >>>
    >>> with limiter.disabled():
    ...     run_batch_import()
"""

from throttlekit.adapters.rate_limit import (
    AbstractStrategy,
    FixedWindowStrategy,
    LeakyBucketStrategy,
)
from throttlekit.adapters.store import AbstractStore, InMemoryTTLStore, RedisStore
from throttlekit.core.errors import AppError, ConfigurationError, RateLimited
from throttlekit.core.keys import build_key, normalize_key
from throttlekit.core.limiter import Limiter, LimiterContext
from throttlekit.core.logging import configure_logging
from throttlekit.core.options import (
    Policy,
    ResolvedOptions,
    StrategyKind,
    build_policy,
    resolve_options,
)

__all__ = [
    "AbstractStore",
    "AbstractStrategy",
    "AppError",
    "ConfigurationError",
    "FixedWindowStrategy",
    "InMemoryTTLStore",
    "LeakyBucketStrategy",
    "Limiter",
    "LimiterContext",
    "Policy",
    "RateLimited",
    "RedisStore",
    "ResolvedOptions",
    "StrategyKind",
    "build_key",
    "build_policy",
    "configure_logging",
    "normalize_key",
    "resolve_options",
]
