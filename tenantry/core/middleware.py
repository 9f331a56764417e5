"""
HTTP middleware: security headers and per-client rate limiting.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import structlog
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from tenantry.core.errors import RateLimited
from tenantry.core.redis import get_redis, hit_fixed_window

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# Security Headers
# ---------------------------------------------------------------------------

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "0",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach security headers to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response


# ---------------------------------------------------------------------------
# Rate limiting (fixed window, Redis-backed)
# ---------------------------------------------------------------------------

RATE_LIMIT_EXEMPT_PATHS = {"/health", "/ready"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window request limit per client IP.

    Counters live in Redis under `ratelimit:{ip}`. If Redis is unreachable
    requests are let through and a warning is logged.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        max_requests: int,
        window_seconds: int,
        enabled: bool = True,
        redis_factory: Optional[Callable[[], Awaitable[object]]] = None,
    ) -> None:
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled
        self.redis_factory = redis_factory or get_redis

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self.enabled or request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        try:
            client = await self.redis_factory()
            count = await hit_fixed_window(client, f"ratelimit:{client_ip}", self.window_seconds)
        except (RedisError, OSError) as exc:
            log.warning("ratelimit.backend_unavailable", error=str(exc))
            return await call_next(request)

        remaining = max(self.max_requests - count, 0)
        if count > self.max_requests:
            log.info("ratelimit.exceeded", client_ip=client_ip, path=request.url.path)
            error = RateLimited()
            response: Response = JSONResponse(status_code=error.status_code, content=error.to_dict())
            response.headers["Retry-After"] = str(self.window_seconds)
        else:
            response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
