"""Rate limiting middleware — Redis-based fixed window per minute.

Each IP gets a counter key like "skillwave:rl:{ip}:{bucket}:{minute}".
Sign-in endpoints (/api/auth/*) get a stricter limit.

Skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from skillwave.realtime import pubsub

logger = structlog.get_logger()

AUTH_PREFIX = "/api/auth"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 20):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    def limit_for(self, path: str) -> tuple[str, int]:
        """(bucket, requests per minute) for a request path."""
        if path.startswith(AUTH_PREFIX):
            return "auth", self.auth_rpm
        return "api", self.default_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        if not pubsub.redis_available():
            return await call_next(request)
        redis = pubsub.get_redis()

        client_ip = request.client.host if request.client else "unknown"
        bucket, rpm = self.limit_for(request.url.path)

        window = int(time.time() // 60)
        key = f"skillwave:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except Exception as e:
            # Redis error: let the request through
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.warning("rate_limit.exceeded", ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
