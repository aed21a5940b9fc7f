"""
Travel Booking Backend — Request ID Middleware
================================================

What:  Tags every request with a short correlation id.
How:   Reuses the caller's X-Request-ID header when present, otherwise
       generates one; stores it in a ContextVar for log lines and error
       bodies, and echoes it back in the response header.
Who:   Applied to every request via Starlette middleware.

A booking client that retries a failed POST /api/bookings can quote the
id from the first attempt's error body when reporting a problem.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = rid
        return response
