"""Policy validation and per-call options resolution.

A Policy is registered once per handle. On every call its fields are merged
with call-site overrides into a ResolvedOptions, which is validated again
because overrides may break the policy's invariants. Nothing here touches
the store or the clock.

Merge order: policy defaults first, then any field present in the call
options. Unknown fields are kept as free-form extras.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from throttlekit.core.errors import ConfigurationError


class StrategyKind(str, Enum):
    """Counting algorithm selected for a call."""

    FIXED_WINDOW = "fixed_window"
    LEAKY_BUCKET = "leaky_bucket"


_KNOWN_FIELDS = frozenset(
    {"threshold", "interval", "burst_rate", "leaky_bucket", "increment", "description"}
)


def _coerce_positive_int(handle: str, name: str, value: Any) -> int:
    """Coerce a threshold-like value to a positive integer.

    Integers, integral floats and digit strings are accepted; booleans are not.

    Raises:
        ConfigurationError: If the value is missing, not integral or not positive.
    """

    coerced: int | None = None
    if isinstance(value, bool):
        coerced = None
    elif isinstance(value, int):
        coerced = value
    elif isinstance(value, float) and value.is_integer():
        coerced = int(value)
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdecimal():
        # ascii guard: int() rejects digits like "²"
        coerced = int(value.strip())

    if coerced is None or coerced <= 0:
        raise ConfigurationError(
            f"Invalid {name} setting for {handle!r}: {value!r}",
            details={"handle": handle, "field": name, "value": value},
        )
    return coerced


def _coerce_interval(handle: str, value: Any) -> float:
    """Coerce an interval (seconds or timedelta) to positive float seconds."""

    seconds: float | None = None
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    elif isinstance(value, str):
        try:
            seconds = float(value.strip())
        except ValueError:
            seconds = None

    if seconds is None or not math.isfinite(seconds) or seconds <= 0:
        raise ConfigurationError(
            f"Invalid interval setting for {handle!r}: {value!r}",
            details={"handle": handle, "field": "interval", "value": value},
        )
    return seconds


@dataclass(frozen=True)
class Policy:
    """Validated per-handle defaults.

    Attributes:
        threshold: Actions allowed per interval (fixed window) or the
            sustained drip rate numerator (leaky bucket).
        interval: Interval length in seconds.
        burst_rate: Bucket capacity; required in leaky-bucket mode.
        leaky_bucket: Whether the handle uses the leaky-bucket strategy.
        increment: Units an admitted action adds to the counter.
        description: Optional human description surfaced in RateLimited.
        extra: Free-form fields passed through to call sites.
    """

    threshold: int
    interval: float
    burst_rate: int | None = None
    leaky_bucket: bool = False
    increment: int = 1
    description: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def as_fields(self) -> dict[str, Any]:
        """Return the policy as a flat mapping suitable for merging."""

        fields: dict[str, Any] = dict(self.extra)
        fields.update(
            threshold=self.threshold,
            interval=self.interval,
            leaky_bucket=self.leaky_bucket,
            increment=self.increment,
        )
        if self.burst_rate is not None:
            fields["burst_rate"] = self.burst_rate
        if self.description is not None:
            fields["description"] = self.description
        return fields


@dataclass(frozen=True)
class ResolvedOptions:
    """Immutable, validated configuration for a single call."""

    handle: str
    key: Any
    threshold: int
    interval: float
    strategy: StrategyKind
    burst_rate: int | None = None
    increment: int = 1
    description: str | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def leaky_bucket(self) -> bool:
        return self.strategy is StrategyKind.LEAKY_BUCKET

    @property
    def drip_rate(self) -> float:
        """Units drained per second in leaky-bucket mode."""
        return self.threshold / self.interval


def _validate_fields(handle: str, fields: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a merged field mapping and return normalized values.

    Leaky-bucket mode is taken from an explicit ``leaky_bucket`` field when
    present, otherwise inferred from the presence of ``burst_rate``.
    """

    threshold = _coerce_positive_int(handle, "threshold", fields.get("threshold"))
    interval = _coerce_interval(handle, fields.get("interval"))
    increment = _coerce_positive_int(handle, "increment", fields.get("increment", 1))

    raw_burst = fields.get("burst_rate")
    if "leaky_bucket" in fields and fields["leaky_bucket"] is not None:
        leaky_bucket = bool(fields["leaky_bucket"])
    else:
        leaky_bucket = raw_burst is not None

    burst_rate: int | None = None
    if raw_burst is not None:
        burst_rate = _coerce_positive_int(handle, "burst_rate", raw_burst)

    if leaky_bucket:
        if burst_rate is None:
            raise ConfigurationError(
                f"Leaky bucket handle {handle!r} requires a burst_rate setting",
                details={"handle": handle, "field": "burst_rate"},
            )
        if burst_rate <= threshold:
            raise ConfigurationError(
                f"Invalid burst rate setting for {handle!r}: "
                f"burst_rate ({burst_rate}) must exceed threshold ({threshold})",
                details={
                    "handle": handle,
                    "field": "burst_rate",
                    "burst_rate": burst_rate,
                    "threshold": threshold,
                },
            )

    description = fields.get("description")
    extra = {k: v for k, v in fields.items() if k not in _KNOWN_FIELDS}

    return {
        "threshold": threshold,
        "interval": interval,
        "burst_rate": burst_rate,
        "leaky_bucket": leaky_bucket,
        "increment": increment,
        "description": None if description is None else str(description),
        "extra": extra,
    }


def build_policy(handle: str, defaults: Mapping[str, Any]) -> Policy:
    """Validate registration defaults for a handle.

    Args:
        handle: Name of the protected operation.
        defaults: Policy fields, e.g. {"threshold": 5, "interval": 300}.

    Returns:
        Validated Policy.

    Raises:
        ConfigurationError: On invalid threshold, interval, increment or burst rate.
    """

    normalized = _validate_fields(handle, defaults)
    normalized["extra"] = MappingProxyType(normalized["extra"])
    return Policy(**normalized)


def resolve_options(
    policies: Mapping[str, Policy],
    handle: str,
    key: Any = None,
    call_options: Mapping[str, Any] | None = None,
) -> ResolvedOptions:
    """Merge a handle's policy with call-site overrides.

    Args:
        policies: Registered policies keyed by handle.
        handle: Handle being throttled.
        key: Request key. One-shot iterators are materialized into a tuple
            so key derivation, logging and errors all see the same parts.
        call_options: Per-call overrides of any policy field.

    Returns:
        ResolvedOptions for this call.

    Raises:
        ConfigurationError: If the handle is unregistered or the merged
            configuration is invalid.
    """

    policy = policies.get(handle)
    if policy is None:
        raise ConfigurationError(
            f"No such handle configured: {handle!r}",
            details={"handle": handle},
        )

    if isinstance(key, Iterator):
        key = tuple(key)

    merged = policy.as_fields()
    if call_options:
        merged.update(call_options)

    normalized = _validate_fields(handle, merged)
    strategy = (
        StrategyKind.LEAKY_BUCKET if normalized.pop("leaky_bucket") else StrategyKind.FIXED_WINDOW
    )

    return ResolvedOptions(
        handle=handle,
        key=key,
        strategy=strategy,
        threshold=normalized["threshold"],
        interval=normalized["interval"],
        burst_rate=normalized["burst_rate"],
        increment=normalized["increment"],
        description=normalized["description"],
        extra=MappingProxyType(normalized["extra"]),
    )
