"""HTTP middleware: request correlation and access logging.

Every response carries the request id (taken from the incoming header or
generated) and its duration. Each request produces one ``http.request``
log line; throttled responses are logged at warning level so abuse bursts
stand out without grepping limiter events.
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

DURATION_HEADER = "X-Request-Duration-ms"


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id for the duration of the request and log the outcome.

    If the client provides an X-Request-ID header (configurable via
    ``LOG_REQUEST_ID_HEADER``), that value is used. Otherwise a new UUID is
    generated. The id lives in a contextvar so log records emitted by
    limiters and services pick it up without passing it around.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request id and
            duration headers added.

    Side Effects:
        - Sets request_id in contextvars (accessible via get_request_id())
        - Emits one ``http.request`` log line, at WARNING for 429 responses
        - Clears request_id from contextvars after the request completes

    Example:
        >>> # Request arrives with custom ID
        >>> # Headers: {"X-Request-ID": "req-abc-123"}
        >>> # Response includes:
        >>> # {"X-Request-ID": "req-abc-123", "X-Request-Duration-ms": "45.67"}
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.log(
            logging.WARNING if response.status_code == 429 else logging.INFO,
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(DURATION_HEADER, f"{duration_ms:.2f}")
    return response
