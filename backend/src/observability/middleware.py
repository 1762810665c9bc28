"""Request correlation middleware.

Sets the request ID (from X-Request-ID or freshly generated) and the
operator identity (X-Operator-Id) for the duration of a request, and logs
one line when the request starts and one when it ends.
"""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .request_id import generate_request_id, set_operator_id, set_request_id

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to generate and inject request IDs."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)
        set_operator_id(request.headers.get("X-Operator-Id"))

        start_time = time.monotonic()
        logger.info(
            f"{request.method} {request.url.path}",
            extra={"method": request.method, "path": request.url.path},
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {e}",
                extra={
                    "error_type": type(e).__name__,
                    "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
                },
                exc_info=True,
            )
            raise

        logger.info(
            f"Request completed: {response.status_code}",
            extra={
                "status_code": response.status_code,
                "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )
        response.headers["X-Request-ID"] = request_id
        return response
