"""Request id middleware so limiter logs correlate with HTTP requests.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import uuid

from fastapi import Request, Response

from throttlekit.core.config import settings
from throttlekit.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate the request id into contextvars and back to the client.

    The incoming header (LOG_REQUEST_ID_HEADER, X-Request-ID by default) is
    reused when present, otherwise a UUID4 is generated. Limiter events
    logged while handling the request, including 429s, carry the id.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    return response
