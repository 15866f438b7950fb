"""
FastAPI Application Factory

Creates and configures the CaseGate API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

import casegate
from config import get_settings
from casegate.errors import CaseGateError, Forbidden, ServiceUnavailable

from .dependencies import ServiceContainer, build_services
from .middleware import (
    AuditMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
)
from .routes import admin, auth, chat, documents, health

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = 30


def configure_logging(level: str) -> None:
    """Configure structlog once for the process."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if get_settings().is_development
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        cache_logger_on_first_use=True,
    )


async def handle_domain_error(request: Request, exc: CaseGateError) -> JSONResponse:
    """Map domain errors to non-technical JSON responses."""
    if isinstance(exc, Forbidden):
        logger.warning("request_forbidden", path=request.url.path, case_id=exc.case_id, detail=str(exc))
    elif exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, detail=str(exc))
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code, detail=str(exc))

    headers = {}
    if isinstance(exc, ServiceUnavailable) or exc.status_code == 503:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.user_message,
            "retryable": exc.retryable,
        },
        headers=headers,
    )


def create_app(
    services: Optional[ServiceContainer] = None,
    background_jobs: bool = True,
    title: str = "CaseGate API",
    description: str = "Case-scoped access control for a document assistant",
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Prebuilt service container; built from settings at startup
            when omitted
        background_jobs: Start the scheduled sync and thread sweep
        title: API title
        description: API description

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        configure_logging(settings.log_level)
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        container: ServiceContainer = app.state.services

        if background_jobs:
            container.jobs.start(sync_now=settings.sync_on_startup)
        logger.info("application_started", environment=settings.environment.value)

        yield

        container.jobs.stop()
        await container.aclose()
        logger.info("application_stopped")

    app = FastAPI(
        title=title,
        description=description,
        version=casegate.__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.services = services

    app.add_exception_handler(CaseGateError, handle_domain_error)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(AuditMiddleware)
    app.add_middleware(RateLimitMiddleware, requests_per_minute=settings.rate_limit_per_minute)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Auth"])
    app.include_router(chat.router, prefix="/api/v1/chat", tags=["Chat"])
    app.include_router(documents.router, prefix="/api/v1/documents", tags=["Documents"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

    return app


# Create default app instance
app = create_app()
