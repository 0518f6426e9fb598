"""
FastAPI application factory for the Kartel backend.

This module creates the main FastAPI app with:
- CORS configuration for the site frontend
- Backend lifecycle management
- Error rendering as ``{"error": message}``
- Public, member and admin API routes

Run with ``uvicorn kartel_server.api.app:create_app --factory``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..backend import Backend
from ..config import ServerConfig
from ..errors import ConfigurationError, KartelError, UpstreamError
from .routes import router
from .settings import ApiSettings

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _public_message(exc: KartelError) -> str:
    """Message safe to return for an error of this status."""
    if exc.status_code < 500:
        return exc.message
    if isinstance(exc, ConfigurationError):
        return "Server configuration error"
    if isinstance(exc, UpstreamError):
        return exc.message
    return "Internal server error"


def install_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": message}`` with its mapped status."""

    @app.exception_handler(KartelError)
    async def kartel_error_handler(request: Request, exc: KartelError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"{request.method} {request.url.path} failed: {exc.message}",
                extra={"code": exc.code, **exc.details},
            )
        return _error(exc.status_code, _public_message(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"Invalid {location}: {first.get('msg')}" if location else "Invalid request body"
        else:
            message = "Invalid request body"
        return _error(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 405:
            message = "Method not allowed"
        return _error(exc.status_code, message)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} crashed: {exc}", exc_info=True)
        return _error(500, "Internal server error")


def create_app(
    config: ServerConfig | None = None,
    backend: Backend | None = None,
    settings: ApiSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (loaded from env if neither it nor
            ``backend`` is given)
        backend: Pre-built backend, used by tests to inject collaborators
        settings: HTTP settings (loaded from env if not provided)
    """
    settings = settings or ApiSettings()
    backend = backend or Backend(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage backend lifecycle."""
        await backend.start()
        app.state.backend = backend
        app.state.settings = settings

        yield

        await backend.stop()

    app = FastAPI(
        title="The Kartel",
        description="Membership, events and notifications backend for The Kartel.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS for the site frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    install_error_handlers(app)

    # API routes
    app.include_router(router, prefix="/api/v1")

    # Health endpoint at root
    @app.get("/health")
    async def health():
        return {
            "status": "healthy" if backend.is_running else "starting",
            "service": "kartel-server",
            "store": backend.config.store.backend.value,
        }

    return app
