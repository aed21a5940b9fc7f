"""
Travel Booking Backend — Access Log Middleware
================================================

What:  One log line per API request: method, path, status, duration,
       request id and client address.
Who:   Applied to every request via Starlette middleware, inside
       RequestIDMiddleware so the id is already set.

Log levels follow the response status:
    5xx → ERROR    4xx → WARNING    everything else → INFO

Bodies and Authorization headers are never logged; booking requests carry
guest names, emails and phone numbers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.request_id import request_id_var

logger = logging.getLogger("travel_booking.access")

QUIET_PATHS = {"/health"}


def client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        rid = request_id_var.get("")
        client_ip = client_address(request)
        logger.log(
            level_for_status(response.status_code),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
