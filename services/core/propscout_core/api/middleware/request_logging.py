"""Request logging middleware.

Tags every request with a request id (taken from ``X-Request-ID`` when the
caller supplies one), binds it as the logging context for everything the
request does, and logs one line per completed request.
"""

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from propscout_core.observability.logging import (
    RequestContext,
    bind_request_context,
    get_logger,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Paths not worth a log line
QUIET_PATHS = {"/healthz"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs each request with its id, status and duration."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        context = RequestContext(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        with bind_request_context(context):
            started = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                logger.error("Request failed", exc_info=True)
                raise

            response.headers[REQUEST_ID_HEADER] = request_id
            if request.url.path not in QUIET_PATHS:
                logger.info(
                    "Request completed",
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - started) * 1000, 1),
                )
        return response
