"""
Travel Booking Backend — API Rate Limiting
============================================

What:  Per-client sliding-window limit on /api/ requests
       (default 100 requests per 15 minutes).
How:   Keeps a deque of request timestamps per client address; entries
       older than the window are dropped before each check.
Who:   Applied to every request; paths outside /api/ pass straight through.

Scope:
    Counters live in process memory, so each worker enforces its own
    limit. Rejections use the same error envelope as RateLimitExceededError
    in the exception handlers, with a Retry-After header.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import settings
from app.exceptions import RateLimitExceededError
from app.middleware.logging import client_address
from app.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

LIMITED_PREFIX = "/api/"


class SlidingWindowCounter:
    """Request timestamps per key over a rolling window of `window` seconds."""

    def __init__(
        self,
        limit: int,
        window: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window = window
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, key: str) -> Optional[int]:
        """
        Record one request for `key`.

        Returns None when allowed, otherwise the seconds until the oldest
        request in the window expires (the request is not recorded).
        """
        now = self.clock()
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self.window:
            hits.popleft()

        if len(hits) >= self.limit:
            return int(hits[0] + self.window - now) + 1

        hits.append(now)
        return None

    def prune(self) -> None:
        cutoff = self.clock() - self.window
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    PRUNE_EVERY = 1000

    def __init__(self, app, limit: Optional[int] = None, window: Optional[int] = None):
        super().__init__(app)
        self.counter = SlidingWindowCounter(
            limit=limit or settings.rate_limit_requests,
            window=window or settings.rate_limit_window,
        )
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith(LIMITED_PREFIX):
            return await call_next(request)

        client_ip = client_address(request)
        retry_after = self.counter.hit(client_ip)
        if retry_after is not None:
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds",
                client_ip, self.counter.limit, self.counter.window,
            )
            error = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=error.status_code,
                content={
                    "error": error.error_code,
                    "message": error.message,
                    "details": error.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        self._seen += 1
        if self._seen % self.PRUNE_EVERY == 0:
            self.counter.prune()

        return await call_next(request)
