"""Redis-backed counter store shared across processes.

Values are JSON encoded so both strategies' records (an integer count, a
level/timestamp mapping) survive the round trip. Redis applies the expiry,
so idle counters are reclaimed without a sweeper.

Connection and command errors are not caught here; they reach the caller.
"""

from __future__ import annotations

import json
import math
from typing import Any

import redis

from throttlekit.adapters.store.base import AbstractStore


class RedisStore(AbstractStore):
    """Store adapter over a synchronous ``redis.Redis`` client."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStore":
        """Create a store from a Redis URL (e.g. redis://localhost:6379/0)."""

        kwargs.setdefault("decode_responses", True)
        return cls(redis.Redis.from_url(url, **kwargs))

    def read(self, key: str) -> Any | None:
        raw = self._client.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def write(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        ttl_ms = max(1, math.ceil(ttl_seconds * 1000))
        self._client.set(key, json.dumps(value), px=ttl_ms)

    def delete(self, key: str) -> None:
        self._client.delete(key)
