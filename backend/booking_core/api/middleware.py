"""
Request middleware: correlation IDs, timing and the access log line.

Every log event emitted while a request is in flight carries its request_id,
and booking_id when the path names a booking, so a booking's transitions,
ledger writes and refund calls can be pulled out of the log stream together.
"""

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import structlog

from booking_core.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_BOOKING_PATH = re.compile(r"/bookings/(\d+)(?:/|$)")


def _request_id(request: Request) -> str:
    # Gateways and upstream proxies may already have assigned one
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if incoming and len(incoming) <= 64:
        return incoming
    return uuid.uuid4().hex[:12]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)
        started = time.perf_counter()

        structlog.contextvars.clear_contextvars()
        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        match = _BOOKING_PATH.search(request.url.path)
        if match:
            context["booking_id"] = int(match.group(1))
        structlog.contextvars.bind_contextvars(**context)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                error=str(exc),
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        log = logger.warning if response.status_code >= 500 else logger.info
        log("request_completed", status_code=response.status_code, duration_ms=duration_ms)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
