"""Rate limiting middleware using Redis."""

import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config import get_settings
from shared.redis_client import get_redis_client

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/admin/auth/login"

# Rate limit for login endpoint (stricter - brute force protection)
LOGIN_RATE_LIMIT_MAX_ATTEMPTS = 5
LOGIN_RATE_LIMIT_WINDOW_SECONDS = 300  # 5 minutes


def current_window(window_seconds: int, now: float | None = None) -> int:
    """Index of the fixed window containing ``now``."""
    return int(now if now is not None else time.time()) // window_seconds


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce rate limiting using Redis.

    Limits requests per source IP address within a fixed window
    (RATE_LIMIT_MAX_REQUESTS per RATE_LIMIT_WINDOW_SECONDS).
    Returns 429 Too Many Requests if limit is exceeded.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip rate limiting for health check endpoint
        if request.url.path == "/health":
            return await call_next(request)

        # Extract client IP (consider X-Forwarded-For for proxied requests)
        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # Take first IP in chain (original client)
            client_ip = forwarded_for.split(",")[0].strip()

        try:
            redis_client = get_redis_client()

            # Login endpoint always gets the strict limit
            if request.url.path == LOGIN_PATH:
                return await self._rate_limit_login(
                    request, call_next, redis_client, client_ip
                )

            # Other admin routes: skip rate limiting ONLY if token is VALID
            if request.url.path.startswith("/api/admin/"):
                token = self._extract_token(request)
                if token and self._is_valid_token(token):
                    return await call_next(request)

            return await self._apply_rate_limit(
                request, call_next, redis_client, client_ip
            )

        except Exception as e:
            # Log error but don't block request if Redis fails
            logger.error(f"Rate limit check failed for IP {client_ip}: {e}")
            fallback_response: Response = await call_next(request)
            return fallback_response

    def _extract_token(self, request: Request) -> str | None:
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header.split(" ", 1)[1]
        return request.cookies.get("admin_token")

    def _is_valid_token(self, token: str) -> bool:
        """
        Verify if JWT token is valid.

        Only checks signature and expiration - actual authorization
        is handled by the route dependencies.
        """
        secret = get_settings().ADMIN_JWT_SECRET
        if not secret:
            return False
        try:
            payload = jwt.decode(token, secret, algorithms=["HS256"])
        except JWTError:
            return False
        return payload.get("type") == "admin"

    async def _rate_limit_login(
        self,
        request: Request,
        call_next: Callable,
        redis_client,
        client_ip: str,
    ) -> Response:
        """Limits login to 5 attempts per 5 minutes per IP."""
        window = current_window(LOGIN_RATE_LIMIT_WINDOW_SECONDS)
        redis_key = f"login_attempts:{client_ip}:{window}"

        attempts = await redis_client.incr(redis_key)
        if attempts == 1:
            await redis_client.expire(redis_key, LOGIN_RATE_LIMIT_WINDOW_SECONDS)

        if attempts > LOGIN_RATE_LIMIT_MAX_ATTEMPTS:
            logger.warning(
                f"Login rate limit exceeded for IP {client_ip}: "
                f"{attempts} attempts in {LOGIN_RATE_LIMIT_WINDOW_SECONDS}s window"
            )
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error_code": "RATE_LIMITED",
                    "error_message": "محاولات تسجيل دخول كثيرة، يرجى المحاولة لاحقاً",
                },
                headers={
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(LOGIN_RATE_LIMIT_WINDOW_SECONDS),
                },
            )

        remaining = max(0, LOGIN_RATE_LIMIT_MAX_ATTEMPTS - attempts)
        response: Response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

    async def _apply_rate_limit(
        self,
        request: Request,
        call_next: Callable,
        redis_client,
        client_ip: str,
    ) -> Response:
        settings = get_settings()
        max_requests = settings.RATE_LIMIT_MAX_REQUESTS
        window_seconds = settings.RATE_LIMIT_WINDOW_SECONDS

        window = current_window(window_seconds)
        redis_key = f"rate_limit:{client_ip}:{window}"

        request_count = await redis_client.incr(redis_key)
        if request_count == 1:
            await redis_client.expire(redis_key, window_seconds)

        remaining = max(0, max_requests - request_count)

        if request_count > max_requests:
            logger.warning(
                f"Rate limit exceeded for IP {client_ip}: {request_count} requests",
                extra={"request_path": request.url.path},
            )
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error_code": "RATE_LIMITED",
                    "error_message": "طلبات كثيرة، يرجى المحاولة لاحقاً",
                },
                headers={
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(window_seconds),
                },
            )

        response: Response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
