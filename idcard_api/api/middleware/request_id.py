"""
Request ID middleware for request correlation.

- Accepts an incoming X-Request-ID or generates one
- Exposes it on request.state and the response headers
- Sets the logging context var so every log line in the request carries it
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from idcard_api.logging_config import get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 1000
_MAX_INCOMING_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a correlation ID to each request and log slow ones."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        if incoming and len(incoming) <= _MAX_INCOMING_LENGTH:
            request_id = incoming
        else:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            start = time.perf_counter()
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000

            response.headers[REQUEST_ID_HEADER] = request_id

            if duration_ms > SLOW_REQUEST_MS:
                # Path only: verification tokens travel in path and query
                logger.warning(
                    "Slow request",
                    extra={
                        "route": request.scope.get("route").path if request.scope.get("route") else "-",
                        "method": request.method,
                        "duration_ms": round(duration_ms, 1),
                    },
                )

            return response
        finally:
            request_id_var.reset(token)
