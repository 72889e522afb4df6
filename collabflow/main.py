"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from collabflow.api.auth import router as auth_router
from collabflow.api.documents import router as documents_router
from collabflow.api.health import router as health_router
from collabflow.api.projects import router as projects_router
from collabflow.api.storage_auth import router as storage_auth_router
from collabflow.config import Settings
from collabflow.database import create_engine
from collabflow.exceptions import (
    DocumentNotFoundError,
    InternalServerError,
    ProjectNotFoundError,
    ReauthorizationRequiredError,
    StorageConfigurationError,
    StorageNotConnectedError,
    UpstreamServiceError,
    VersionNotFoundError,
)
from collabflow.models.base import Base
from collabflow.repository.registry import create_repository
from collabflow.services.memory_graph import MemoryGraphNotifier
from collabflow.storage.dropbox import DropboxOAuthClient, DropboxStorage
from collabflow.storage.oauth_state import OAuthStateStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from starlette.responses import Response

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


async def init_app_state(
    app: FastAPI, transport: httpx.AsyncBaseTransport | None = None
) -> None:
    """Build the process-wide service handles and attach them to ``app.state``.

    ``transport`` replaces the network transport of the shared HTTP client.
    """
    settings: Settings = app.state.settings

    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    app.state.repository = create_repository(settings, engine, session_factory)

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.storage_timeout_seconds),
        transport=transport,
    )
    app.state.http_client = http_client
    app.state.storage = DropboxStorage(http_client)
    app.state.storage_oauth = DropboxOAuthClient(
        http_client, settings.dropbox_app_key, settings.dropbox_app_secret
    )
    app.state.oauth_state_store = OAuthStateStore(ttl_seconds=600)
    app.state.memory_graph = MemoryGraphNotifier(http_client, settings.memory_graph_url)

    if not settings.is_storage_configured:
        logger.warning("Dropbox app credentials are not configured; storage calls will fail")
    logger.info("Using %s data backend", app.state.repository.backend)


async def close_app_state(app: FastAPI) -> None:
    """Release the handles created by ``init_app_state``."""
    try:
        await app.state.http_client.aclose()
    except Exception as exc:
        logger.error("Error during HTTP client shutdown: %s", exc, exc_info=True)

    try:
        await app.state.engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting CollabFlow (debug=%s)", settings.debug)

    await init_app_state(app)

    yield

    await close_app_state(app)
    logger.info("CollabFlow stopped")


def _error_response(status_code: int, message: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="CollabFlow",
        description="Document sync service backed by Dropbox",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:3000", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    trusted_hosts = settings.trusted_hosts or (
        ["localhost", "127.0.0.1", "::1", "test", "testserver"] if settings.debug else []
    )
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    @app.middleware("http")
    async def security_headers(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        if settings.security_headers_enabled:
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
            if settings.content_security_policy:
                response.headers.setdefault(
                    "Content-Security-Policy",
                    settings.content_security_policy,
                )
        return response

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(storage_auth_router)
    app.include_router(documents_router)
    app.include_router(projects_router)

    # Global exception handlers; every error body is {"error": ...}

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        response = _error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return _error_response(422, "Invalid request", fields=errors)

    @app.exception_handler(StorageConfigurationError)
    async def storage_configuration_handler(
        request: Request, exc: StorageConfigurationError
    ) -> JSONResponse:
        logger.error(
            "StorageConfigurationError in %s %s: %s", request.method, request.url.path, exc
        )
        return _error_response(500, str(exc) or "Storage provider not configured")

    @app.exception_handler(StorageNotConnectedError)
    async def storage_not_connected_handler(
        request: Request, exc: StorageNotConnectedError
    ) -> JSONResponse:
        return _error_response(400, str(exc) or "Dropbox not connected")

    @app.exception_handler(ReauthorizationRequiredError)
    async def reauthorization_handler(
        request: Request, exc: ReauthorizationRequiredError
    ) -> JSONResponse:
        logger.warning(
            "Reauthorization required in %s %s: %s", request.method, request.url.path, exc
        )
        return _error_response(
            401, str(exc) or "Dropbox authorization expired", requires_reauth=True
        )

    @app.exception_handler(UpstreamServiceError)
    async def upstream_error_handler(request: Request, exc: UpstreamServiceError) -> JSONResponse:
        logger.error(
            "%s in %s %s: %s (upstream status %s)",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc,
            exc.status_code,
        )
        return _error_response(500, str(exc), upstream_status=exc.status_code)

    @app.exception_handler(DocumentNotFoundError)
    @app.exception_handler(ProjectNotFoundError)
    @app.exception_handler(VersionNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return _error_response(404, str(exc) or "Not found")

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return _error_response(500, "Internal server error")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError in %s %s: %s", request.method, request.url.path, exc)
        return _error_response(400, str(exc) or "Invalid value")

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error_response(503, "Database temporarily unavailable")

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "collabflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
