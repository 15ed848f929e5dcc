"""Request id, access logging and chat rate limiting."""

import logging
import math
import time
import uuid
from collections import defaultdict, deque
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def client_key(request: Request) -> str:
    """First X-Forwarded-For hop when proxied, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, reusing the caller's X-Request-ID if sent."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log line per request. For SSE the duration is time to first byte."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "[%s] %s %s -> %d in %.0fms (conversation=%s)",
            getattr(request.state, "request_id", "-"),
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
            response.headers.get("X-Conversation-Id", "-"),
        )
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client on the chat endpoints."""

    window = 60.0

    def __init__(
        self,
        app,
        requests_per_minute: int = 20,
        path_prefix: str = "/api/chat",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        self._limit = requests_per_minute
        self._prefix = path_prefix
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _recent(self, key: str, now: float) -> deque[float]:
        hits = self._hits[key]
        while hits and hits[0] <= now - self.window:
            hits.popleft()
        return hits

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(self._prefix):
            return await call_next(request)

        key = client_key(request)
        now = self._clock()
        hits = self._recent(key, now)

        if len(hits) >= self._limit:
            retry_after = max(1, math.ceil(hits[0] + self.window - now))
            logger.warning("Chat rate limit hit for %s (%d in window)", key, len(hits))
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": f"Too many requests: limit is {self._limit} per minute",
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(self._limit),
                    "X-RateLimit-Remaining": "0",
                },
            )

        hits.append(now)
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._limit)
        response.headers["X-RateLimit-Remaining"] = str(self._limit - len(hits))
        return response
