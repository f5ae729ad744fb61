"""Middleware for security headers, login rate limiting and request logging."""

import logging
import time
from collections import defaultdict
from datetime import UTC, datetime, timedelta

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from mbee.core.config import get_settings
from mbee.core.metrics import observe_http_request
from mbee.core.request_context import new_request_id, request_id_context
from mbee.core.structured_logging import log_json
from mbee.schemas.errors import ErrorResponse

logger = logging.getLogger(__name__)
settings = get_settings()

LOGIN_PATH = "/api/auth/login"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add basic security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        if settings.environment == "production":
            forwarded_proto = request.headers.get("x-forwarded-proto")
            scheme = forwarded_proto or request.url.scheme
            if scheme == "https":
                response.headers.setdefault(
                    "Strict-Transport-Security",
                    "max-age=63072000; includeSubDomains",
                )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP rate limit on the login endpoint (production only)."""

    def __init__(self, app: ASGIApp, per_minute: int | None = None):
        super().__init__(app)
        self.per_minute = per_minute or settings.rate_limit_login_per_minute
        # {client_ip: [timestamps]}
        self._requests: dict[str, list[datetime]] = defaultdict(list)

    def _count_recent(self, client_ip: str) -> int:
        """Drop timestamps older than a minute, and IPs left with none."""
        cutoff = datetime.now(UTC) - timedelta(minutes=1)
        for ip in list(self._requests):
            recent = [ts for ts in self._requests[ip] if ts > cutoff]
            if recent:
                self._requests[ip] = recent
            else:
                del self._requests[ip]
        return len(self._requests.get(client_ip, ()))

    async def dispatch(self, request: Request, call_next):
        if settings.environment != "production" or request.url.path != LOGIN_PATH:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        if self._count_recent(client_ip) >= self.per_minute:
            log_json(logger, logging.WARNING, "login_rate_limited", client_ip=client_ip)
            body = ErrorResponse(
                error="rate_limited",
                message="Too many login attempts. Please try again later.",
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=body.model_dump()
            )
        self._requests[client_ip].append(datetime.now(UTC))

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Request logging middleware with structured logging.

    Logs:
    - Method, path, status code, duration
    - IP address for security
    - Structured JSON format
    """

    async def dispatch(self, request: Request, call_next):
        """Log request details."""
        incoming_request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
        )
        request_id = None
        if incoming_request_id:
            candidate = incoming_request_id.strip()
            if candidate and len(candidate) <= 128 and "\n" not in candidate and "\r" not in candidate:
                request_id = candidate

        if not request_id:
            request_id = new_request_id()

        request.state.request_id = request_id

        start_time = time.perf_counter()
        client_ip = request.client.host if request.client else "unknown"
        method = request.method
        path = request.url.path

        with request_id_context(request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                duration_ms = (time.perf_counter() - start_time) * 1000
                log_json(
                    logger,
                    logging.ERROR,
                    "request_error",
                    method=method,
                    path=path,
                    status_code=500,
                    duration_ms=round(duration_ms, 2),
                    client_ip=client_ip,
                    exception=exc.__class__.__name__,
                )
                raise

            response.headers.setdefault("X-Request-ID", request_id)

            duration_ms = (time.perf_counter() - start_time) * 1000

            route_obj = request.scope.get("route")
            route_template = getattr(route_obj, "path", None) if route_obj else None
            if not route_template:
                route_template = "unmatched"

            observe_http_request(
                method=method,
                route=route_template,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

            # Log at appropriate level
            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO

            log_json(
                logger,
                level,
                "request",
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                client_ip=client_ip,
            )

            return response
