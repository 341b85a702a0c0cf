"""Storage key derivation.

Keys are deterministic functions of (handle, request key, strategy, time):
- fixed window: handle, serialized request key and the window start, so
  every window addresses a fresh slot
- leaky bucket: handle and serialized request key only; the same slot is
  reused across calls

The joined parts are hashed so arbitrary request keys (IPs, emails, tuples)
map to bounded, store-safe keys.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from hashlib import sha256
from typing import Any

# ASCII unit separator; not expected inside identifiers
KEY_SEPARATOR = "\x1f"

# Applied in order; the backslash goes first so escapes stay unambiguous
_ESCAPES = (("\\", "\\\\"), (KEY_SEPARATOR, "\\s"), ("[", "\\["), ("]", "\\]"))


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bytes):
        text = value.decode("utf-8", errors="backslashreplace")
    else:
        text = str(value)
    for raw, escaped in _ESCAPES:
        text = text.replace(raw, escaped)
    return text


def _serialize(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        return [_scalar_to_str(value)]
    if isinstance(value, (set, frozenset, dict)):
        raise TypeError(f"Request key must be a scalar or an ordered sequence, got {type(value).__name__}")

    parts: list[str] = []
    for item in value:
        if isinstance(item, Iterable) and not isinstance(item, (str, bytes)):
            # nested sequences keep their grouping: [["a", "b"]] != ["a", "b"]
            parts.append("[" + KEY_SEPARATOR.join(_serialize(item)) + "]")
        else:
            parts.extend(_serialize(item))
    return parts


def normalize_key(key: Any) -> str:
    """Serialize a request key into a stable string.

    Scalars are escaped so a separator or bracket inside a value can never
    be confused with the structure of the key. Nested sequences are wrapped
    in brackets. A bare scalar serializes like a one-element sequence.

    Args:
        key: None, a scalar, or an ordered (possibly nested) sequence of scalars.

    Returns:
        Parts joined by KEY_SEPARATOR; empty string for None or an empty sequence.

    Examples:
        >>> normalize_key(None)
        ''
        >>> normalize_key(42)
        '42'
        >>> normalize_key([7, "download"]) == "7\\x1fdownload"
        True
        >>> normalize_key(["a\\x1fb"]) == normalize_key(["a", "b"])
        False
    """

    return KEY_SEPARATOR.join(_serialize(key))


def window_start(now: float, interval: float) -> float:
    """Start of the fixed window containing ``now``."""

    return math.floor(now / interval) * interval


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def build_key(
    handle: str,
    request_key: Any,
    interval: float,
    windowed: bool,
    now: float,
    *,
    prefix: str = "throttlekit",
) -> str:
    """Build the storage key for a handle/request key pair.

    Args:
        handle: Registered handle name.
        request_key: Caller-supplied discriminator (see normalize_key).
        interval: Interval length in seconds.
        windowed: True for the fixed-window strategy.
        now: Current UNIX time in seconds.
        prefix: Namespace prepended to the key.

    Returns:
        "<prefix>/<strategy>/<sha256 hex>".
    """

    parts = [_scalar_to_str(handle), normalize_key(request_key)]
    if windowed:
        parts.append(_format_number(window_start(now, interval)))
        kind = "fixed_window"
    else:
        kind = "leaky_bucket"

    digest = sha256(KEY_SEPARATOR.join(parts).encode("utf-8")).hexdigest()
    return f"{prefix}/{kind}/{digest}"
