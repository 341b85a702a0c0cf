"""Exception types raised by the limiter.

Two failures are part of the public contract:
- ConfigurationError: a policy or call-site option is invalid, or the handle
  was never registered. Always raised before the store is touched.
- RateLimited: raised by the raising decision API when a handle/key is at
  its threshold. Carries enough context to build a backoff response.

Store failures are not wrapped; they propagate unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    handle: str
    field: str
    value: Any
    threshold: int
    interval: float
    burst_rate: int
    retry_after: int
    strategy: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when a policy or call-site option fails validation."""

    def __init__(self, message: str, details: ErrorDetails | None = None) -> None:
        super().__init__(code="configuration_error", message=message, details=details)


class RateLimited(AppError):
    """Raised when an action is throttled by the raising decision API.

    Attributes:
        handle: Registered handle that was throttled.
        key: Request key as supplied by the caller.
        threshold: Resolved threshold for the call.
        interval: Resolved interval in seconds.
        cache_key: Storage key of the counter.
        retry_after: Whole seconds until an action would be admitted again.
        description: Optional human description from the policy.
        strategy: Name of the counting strategy in effect.
    """

    def __init__(
        self,
        *,
        handle: str,
        key: Any,
        threshold: int,
        interval: float,
        cache_key: str,
        retry_after: int,
        description: str | None = None,
        strategy: str = "fixed_window",
    ) -> None:
        self.handle = handle
        self.key = key
        self.threshold = threshold
        self.interval = interval
        self.cache_key = cache_key
        self.retry_after = retry_after
        self.description = description
        self.strategy = strategy

        message = (
            f"{handle} threshold of {threshold} tries per {interval:g}s exceeded "
            f"for key {key!r}, hash {cache_key}"
        )
        super().__init__(
            code="rate_limited",
            message=message,
            details={
                "handle": handle,
                "threshold": threshold,
                "interval": interval,
                "retry_after": retry_after,
                "strategy": strategy,
            },
        )
