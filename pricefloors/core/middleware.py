from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("pricefloors.request")

# polled by load balancers; logged at DEBUG only
_QUIET_PATHS = ("/api/v1/health",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One log line per request.
    - request id taken from x-request-id or generated, echoed back
    - server errors at ERROR, health checks at DEBUG
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.perf_counter()
        status = 500

        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            if status >= 500:
                level = logging.ERROR
            elif request.url.path in _QUIET_PATHS:
                level = logging.DEBUG
            else:
                level = logging.INFO
            logger.log(
                level,
                "request_id=%s %s %s -> %s (%.2f ms)",
                request_id, request.method, request.url.path, status, elapsed_ms,
            )

        response.headers["x-request-id"] = request_id
        response.headers["x-response-time-ms"] = f"{elapsed_ms:.2f}"
        return response
