"""Limiter facade: the public decision API.

A Limiter owns its configuration explicitly (LimiterContext) instead of
keeping it in module globals:
- the policy registry, populated at startup and read on every call
- the disable scope, a depth counter so nested scopes restore correctly
- the optional before-throttle hook

Per call, the limiter resolves options, picks the strategy the options name,
derives the storage key and lets the strategy answer "at threshold?". The
read-then-write pair is not atomic (see adapters.rate_limit.base).
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

from throttlekit.adapters.rate_limit import (
    AbstractStrategy,
    FixedWindowStrategy,
    LeakyBucketStrategy,
)
from throttlekit.adapters.store import AbstractStore, InMemoryTTLStore, RedisStore
from throttlekit.core.config import LimiterSettings
from throttlekit.core.errors import ConfigurationError, RateLimited
from throttlekit.core.keys import normalize_key
from throttlekit.core.logging import hash_request_key
from throttlekit.core.options import (
    Policy,
    ResolvedOptions,
    StrategyKind,
    build_policy,
    resolve_options,
)

logger = logging.getLogger(__name__)

BeforeThrottleCallback = Callable[[str, Any, int, float], None]


@dataclass
class LimiterContext:
    """Mutable configuration owned by one Limiter.

    Attributes:
        policies: Registered policies keyed by handle.
        before_throttle: Hook invoked right before a throttled call reports.
    """

    policies: dict[str, Policy] = field(default_factory=dict)
    before_throttle: BeforeThrottleCallback | None = None
    _disabled_depth: int = field(default=0, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def disabled(self) -> bool:
        return self._disabled_depth > 0

    def enter_disabled(self) -> None:
        with self._lock:
            self._disabled_depth += 1

    def exit_disabled(self) -> None:
        with self._lock:
            if self._disabled_depth > 0:
                self._disabled_depth -= 1


class Limiter:
    """Rate limiter over a pluggable counter store.

    Example:
        >>> limiter = Limiter(InMemoryTTLStore())
        >>> policy = limiter.register_policy("login", threshold=5, interval=300)
        >>> limiter.throttle("login", ["acct-1", "10.0.0.1"])
        False
    """

    def __init__(
        self,
        store: AbstractStore,
        *,
        clock: Callable[[], float] = time.time,
        key_prefix: str = "throttlekit",
        context: LimiterContext | None = None,
    ) -> None:
        self._store = store
        self._context = context or LimiterContext()
        self._strategies: dict[StrategyKind, AbstractStrategy] = {
            StrategyKind.FIXED_WINDOW: FixedWindowStrategy(store, clock=clock, key_prefix=key_prefix),
            StrategyKind.LEAKY_BUCKET: LeakyBucketStrategy(store, clock=clock, key_prefix=key_prefix),
        }

    @classmethod
    def from_settings(
        cls,
        limiter_settings: LimiterSettings,
        *,
        store: AbstractStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "Limiter":
        """Build a limiter from settings and register the configured policies.

        Args:
            limiter_settings: Limiter section of the application settings.
            store: Explicit store; built from ``store_backend`` when omitted.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ConfigurationError: On an unknown backend, a missing redis_url or
                an invalid configured policy.
        """

        if store is None:
            store = _build_store(limiter_settings, clock)

        limiter = cls(store, clock=clock, key_prefix=limiter_settings.key_prefix)
        for handle, fields in limiter_settings.policies.items():
            limiter.register_policy(handle, fields)
        return limiter

    @property
    def store(self) -> AbstractStore:
        return self._store

    @property
    def configurations(self) -> Mapping[str, Policy]:
        """Read-only view of registered policies."""
        return MappingProxyType(self._context.policies)

    @property
    def is_disabled(self) -> bool:
        return self._context.disabled

    def register_policy(
        self,
        handle: str,
        defaults: Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> Policy:
        """Register (or replace) the policy for a handle.

        Args:
            handle: Name of the protected operation, e.g. "login_attempt".
            defaults: Policy fields as a mapping.
            **fields: Policy fields as keywords; override ``defaults``.

        Returns:
            The validated Policy.

        Raises:
            ConfigurationError: On invalid threshold, interval or burst rate.
        """

        merged = dict(defaults or {})
        merged.update(fields)
        policy = build_policy(handle, merged)
        self._context.policies[handle] = policy

        logger.info(
            "policy.registered",
            extra={
                "handle": handle,
                "threshold": policy.threshold,
                "interval_s": policy.interval,
                "strategy": (
                    StrategyKind.LEAKY_BUCKET if policy.leaky_bucket else StrategyKind.FIXED_WINDOW
                ).value,
            },
        )
        return policy

    configure = register_policy

    def on_before_throttle(self, callback: BeforeThrottleCallback | None) -> BeforeThrottleCallback | None:
        """Register the hook called as ``callback(handle, key, threshold, interval)``.

        Only one hook is kept; registering again replaces it and None removes
        it. Returns the callback so this can be used as a decorator.
        """

        self._context.before_throttle = callback
        return callback

    @contextmanager
    def disabled(self) -> Iterator[None]:
        """Disable throttling for the duration of a ``with`` block.

        While any disabled scope is active, ``throttle`` records nothing and
        reports "not throttled". Scopes nest; the outermost exit re-enables.
        """

        self._context.enter_disabled()
        try:
            yield
        finally:
            self._context.exit_disabled()

    def _prepare(
        self,
        handle: str,
        key: Any,
        options: Mapping[str, Any] | None,
    ) -> tuple[ResolvedOptions, str, AbstractStrategy]:
        resolved = resolve_options(self._context.policies, handle, key, options)
        strategy = self._strategies[resolved.strategy]
        cache_key = strategy.build_key(resolved)
        return resolved, cache_key, strategy

    def _record(
        self,
        resolved: ResolvedOptions,
        cache_key: str,
        strategy: AbstractStrategy,
    ) -> tuple[bool, float]:
        """Check and record one action. Returns (throttled, counter_before)."""

        counter = strategy.counter(cache_key, resolved)

        if strategy.at_threshold(counter, resolved):
            logger.warning(
                "throttle.throttled",
                extra={
                    "handle": resolved.handle,
                    "key_hash": hash_request_key(normalize_key(resolved.key)),
                    "strategy": resolved.strategy.value,
                    "counter": counter,
                    "threshold": resolved.threshold,
                    "interval_s": resolved.interval,
                },
            )
            callback = self._context.before_throttle
            if callback is not None:
                callback(resolved.handle, resolved.key, resolved.threshold, resolved.interval)
            return True, counter

        strategy.increment(cache_key, resolved, counter)
        logger.debug(
            "throttle.allowed",
            extra={
                "handle": resolved.handle,
                "key_hash": hash_request_key(normalize_key(resolved.key)),
                "strategy": resolved.strategy.value,
                "counter": counter + resolved.increment,
            },
        )
        return False, counter

    def throttle(
        self,
        handle: str,
        key: Any = None,
        options: Mapping[str, Any] | None = None,
        *,
        action: Callable[[], Any] | None = None,
    ) -> bool:
        """Record a single action for the given handle/key combination.

        Args:
            handle: Registered handle associated with the action.
            key: Request-specific key, e.g. [account.id, "download", request_ip].
            options: Request-specific overrides of the handle's policy.
            action: Guarded callable; runs only when the action is admitted.

        Returns:
            True if the handle/key is throttled, otherwise False.

        Raises:
            ConfigurationError: If the handle is unknown or options are invalid.
        """

        resolved, cache_key, strategy = self._prepare(handle, key, options)

        if self._context.disabled:
            logger.debug("throttle.disabled", extra={"handle": handle})
        else:
            throttled, _ = self._record(resolved, cache_key, strategy)
            if throttled:
                return True

        if action is not None:
            action()
        return False

    def throttle_or_fail(
        self,
        handle: str,
        key: Any = None,
        options: Mapping[str, Any] | None = None,
        *,
        action: Callable[[], Any] | None = None,
    ) -> Any:
        """Record a single action, raising when the handle/key is throttled.

        Returns:
            The action's return value if given, otherwise the current count.

        Raises:
            RateLimited: If the threshold for this handle/key has been reached.
            ConfigurationError: If the handle is unknown or options are invalid.
        """

        resolved, cache_key, strategy = self._prepare(handle, key, options)

        if not self._context.disabled:
            throttled, counter = self._record(resolved, cache_key, strategy)
            if throttled:
                raise RateLimited(
                    handle=handle,
                    key=resolved.key,
                    threshold=resolved.threshold,
                    interval=resolved.interval,
                    cache_key=cache_key,
                    retry_after=strategy.retry_after(counter, resolved),
                    description=resolved.description,
                    strategy=resolved.strategy.value,
                )

        if action is not None:
            return action()
        return strategy.current_count(cache_key, resolved)

    def is_throttled(
        self,
        handle: str,
        key: Any = None,
        options: Mapping[str, Any] | None = None,
    ) -> bool:
        """Whether a call to ``throttle_or_fail`` with the same arguments would raise.

        Read-only: never writes to the store.
        """

        resolved, cache_key, strategy = self._prepare(handle, key, options)
        count = strategy.current_count(cache_key, resolved)
        return strategy.at_threshold(count, resolved)

    def current_count(
        self,
        handle: str,
        key: Any = None,
        options: Mapping[str, Any] | None = None,
    ) -> float:
        """Current count (fixed window) or drained level (leaky bucket). Read-only."""

        resolved, cache_key, strategy = self._prepare(handle, key, options)
        return strategy.current_count(cache_key, resolved)

    count = current_count
    query = current_count

    def reset(
        self,
        handle: str,
        key: Any = None,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        """Clear the counter for the given handle/key combination."""

        resolved, cache_key, strategy = self._prepare(handle, key, options)
        strategy.reset(cache_key)
        logger.info(
            "throttle.reset",
            extra={
                "handle": handle,
                "key_hash": hash_request_key(normalize_key(resolved.key)),
            },
        )


def _build_store(limiter_settings: LimiterSettings, clock: Callable[[], float]) -> AbstractStore:
    backend = limiter_settings.store_backend.lower()
    if backend == "memory":
        return InMemoryTTLStore(limiter_settings.memory_max_entries, clock=clock)
    if backend == "redis":
        if not limiter_settings.redis_url:
            raise ConfigurationError(
                "THROTTLE_REDIS_URL is required when store_backend is 'redis'",
                details={"field": "redis_url"},
            )
        return RedisStore.from_url(limiter_settings.redis_url)
    raise ConfigurationError(
        f"Unknown store backend: {limiter_settings.store_backend!r}",
        details={"field": "store_backend", "value": limiter_settings.store_backend},
    )
