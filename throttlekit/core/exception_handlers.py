"""Exception handlers mapping limiter errors to HTTP responses.

Design:
- RateLimited -> 429 with Retry-After (and X-RateLimit-* when enabled)
- ConfigurationError -> 500 (server misconfiguration, not the client's fault)
- Other AppError -> 400
- Unexpected Exception -> generic 500 (safety net)
- All responses include request_id for tracing

Request keys never appear in responses or logs: RateLimited's message embeds
the key, so the 429 body uses the policy description instead.
"""

import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse

from throttlekit.core.config import settings
from throttlekit.core.errors import AppError, ConfigurationError, RateLimited
from throttlekit.core.keys import normalize_key
from throttlekit.core.logging import get_request_id, hash_request_key

logger = logging.getLogger(__name__)


async def rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    """Render a throttled request as 429 Too Many Requests.

    Args:
        request: FastAPI request object.
        exc: RateLimited raised by the limiter.

    Returns:
        JSONResponse with status 429 and backoff headers.
    """

    logger.warning(
        "rate_limit.exceeded",
        extra={
            "handle": exc.handle,
            "key_hash": hash_request_key(normalize_key(exc.key)),
            "threshold": exc.threshold,
            "interval_s": exc.interval,
            "retry_after_s": exc.retry_after,
            "request_path": request.url.path,
        },
    )

    headers = {"Retry-After": str(exc.retry_after)}
    if settings.limiter.include_headers:
        headers["X-RateLimit-Limit"] = str(exc.threshold)
        headers["X-RateLimit-Reset"] = str(int(time.time()) + exc.retry_after)

    return JSONResponse(
        status_code=429,
        headers=headers,
        content={
            "error": {
                "code": exc.code,
                "message": exc.description or "Rate limit exceeded. Try again later.",
                "request_id": get_request_id(),
                "details": {
                    "handle": exc.handle,
                    "retry_after": exc.retry_after,
                },
            }
        },
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle limiter errors with a consistent JSON format."""

    status_code = 500 if isinstance(exc, ConfigurationError) else 400

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    # Configuration details describe server internals; keep them out of client responses
    if exc.details and status_code < 500:
        error_content["details"] = exc.details

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (including store failures)."""

    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with a FastAPI app.

    Example:
        >>> from fastapi import FastAPI
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(RateLimited)(rate_limited_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
