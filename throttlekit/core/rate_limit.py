"""FastAPI dependency guarding routes with a registered handle.

This module wires the limiter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Swap-friendly: the counter store is chosen by settings (memory or redis).
- Throttled requests raise RateLimited; the registered exception handler
  turns it into a 429 response.

Default request key:
- The X-API-Key header value when present.
- Otherwise the client IP.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Awaitable, Callable, Mapping

from fastapi import Header, Request

from throttlekit.core.config import settings
from throttlekit.core.limiter import Limiter

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Request], Any]

_limiter: Limiter | None = None
_limiter_config: str | None = None


def get_limiter() -> Limiter:
    """Return a process-wide limiter instance.

    The instance is cached in-module to preserve in-memory counters across
    requests. If the limiter settings change (primarily in tests), the
    limiter is rebuilt.

    Returns:
        Limiter: Configured limiter with settings policies registered.
    """

    global _limiter, _limiter_config

    config = settings.limiter.model_dump_json()

    if _limiter is None or _limiter_config != config:
        _limiter = Limiter.from_settings(settings.limiter)
        _limiter_config = config
        logger.info(
            "limiter.initialized",
            extra={
                "store_backend": settings.limiter.store_backend,
                "handles": sorted(settings.limiter.policies),
            },
        )

    return _limiter


def build_request_key(request: Request, x_api_key: str | None) -> tuple[str, str]:
    """Build the default request key for the current request.

    Args:
        request: FastAPI request.
        x_api_key: API key value from the X-API-Key header.

    Returns:
        ("api_key", <key>) or ("ip", <client host>).
    """

    if x_api_key:
        return ("api_key", x_api_key)

    client_host = request.client.host if request.client else "unknown"
    return ("ip", client_host)


def throttle_dependency(
    handle: str,
    *,
    key_func: KeyFunc | None = None,
    limiter: Limiter | None = None,
    options: Mapping[str, Any] | None = None,
) -> Callable[..., Awaitable[None]]:
    """Create a FastAPI dependency that records one action per request.

    Args:
        handle: Registered handle to throttle.
        key_func: Derives the request key from the request; defaults to
            build_request_key.
        limiter: Explicit limiter; the process-wide one when omitted.
        options: Per-route overrides of the handle's policy.

    Returns:
        Async dependency suitable for ``Depends``.

    Example:
        >>> @router.post("/login", dependencies=[Depends(throttle_dependency("login"))])
        ... async def login(): ...
    """

    async def enforce_throttle(
        request: Request,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        if not settings.limiter.enabled:
            return

        active = limiter or get_limiter()
        key = key_func(request) if key_func else build_request_key(request, x_api_key)
        active.throttle_or_fail(handle, key, options)

    return enforce_throttle
