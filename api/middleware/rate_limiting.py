"""Rate limiting middleware using Redis."""

import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config import get_settings
from shared.redis_client import get_redis_client

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce rate limiting using Redis.

    Fixed window per source IP: RATE_LIMIT_MAX_REQUESTS per
    RATE_LIMIT_WINDOW_SECONDS. Returns 429 Too Many Requests if the limit is
    exceeded. When Redis is unavailable requests pass through unlimited.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip rate limiting for health check endpoint
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        # Extract client IP (consider X-Forwarded-For for proxied requests)
        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # Take first IP in chain (original client)
            client_ip = forwarded_for.split(",")[0].strip()

        settings = get_settings()
        window = settings.RATE_LIMIT_WINDOW_SECONDS
        redis_key = f"rate_limit:{client_ip}:{int(time.time()) // window}"

        try:
            redis_client = get_redis_client()

            # Increment request count for this IP in the current window
            request_count = await redis_client.incr(redis_key)

            # Set TTL on first request (key creation)
            if request_count == 1:
                await redis_client.expire(redis_key, window)

        except Exception as e:
            # Log error but don't block request if Redis fails
            logger.error(f"Rate limit check failed for IP {client_ip}: {e}")
            return await call_next(request)

        remaining = max(0, settings.RATE_LIMIT_MAX_REQUESTS - request_count)

        if request_count > settings.RATE_LIMIT_MAX_REQUESTS:
            logger.warning(
                f"Rate limit exceeded for IP {client_ip}: {request_count} requests",
                extra={"request_path": request.url.path},
            )
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": "Demasiadas solicitudes", "code": "RATE_LIMITED"},
                headers={"X-RateLimit-Remaining": "0", "Retry-After": str(window)},
            )

        response: Response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
