"""
API Middleware

Request logging, access auditing and rate limiting.
"""

import time
from collections import defaultdict
from typing import Callable, Optional
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import structlog


logger = structlog.get_logger(__name__)


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_ip=_client_ip(request),
            )

            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        return response


class AuditMiddleware(BaseHTTPMiddleware):
    """Logs access to case data and administrative endpoints."""

    AUDIT_PATHS = (
        "/api/v1/chat",
        "/api/v1/documents",
        "/api/v1/admin",
    )

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        path = request.url.path
        should_audit = path.startswith(self.AUDIT_PATHS)

        if should_audit:
            logger.info(
                "audit_event",
                event_type="api_access",
                method=request.method,
                path=path,
                client_ip=_client_ip(request),
            )

        response = await call_next(request)

        if should_audit and response.status_code in (401, 403):
            logger.warning(
                "audit_event_denied",
                event_type="api_denied",
                method=request.method,
                path=path,
                client_ip=_client_ip(request),
                status_code=response.status_code,
            )

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding one-minute window per client.

    Clients are told apart by bearer token, falling back to IP address.
    Health checks are never limited.
    """

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 60,
        dispatch: Callable = None,
    ):
        super().__init__(app, dispatch)
        self.requests_per_minute = requests_per_minute
        self.requests: dict[str, list[float]] = defaultdict(list)

    def _get_client_id(self, request: Request) -> str:
        auth = request.headers.get("Authorization", "")
        if auth:
            return f"auth:{auth[-50:]}"
        return f"ip:{_client_ip(request) or 'unknown'}"

    def _is_rate_limited(self, client_id: str) -> bool:
        now = time.monotonic()
        window_start = now - 60

        self.requests[client_id] = [
            t for t in self.requests[client_id]
            if t > window_start
        ]

        if len(self.requests[client_id]) >= self.requests_per_minute:
            return True

        self.requests[client_id].append(now)
        return False

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        if request.url.path.startswith("/health"):
            return await call_next(request)

        client_id = self._get_client_id(request)

        if self._is_rate_limited(client_id):
            logger.warning(
                "rate_limit_exceeded",
                client_id=client_id,
                path=request.url.path,
            )
            services = getattr(request.app.state, "services", None)
            if services is not None:
                services.audit.log_rate_limited(_client_ip(request) or client_id, request.url.path)
            return Response(
                content="Rate limit exceeded",
                status_code=429,
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(self.requests_per_minute),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)

        remaining = max(0, self.requests_per_minute - len(self.requests[client_id]))
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(remaining)

        return response
