"""FastAPI application entry point for the URL shortener service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │ create_app() │  middleware, exception handlers, routes
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │  manager.initialize(): storage.init(), pipeline.start()
    │ startup      │  gRPC server start (GRPC_ENABLED)
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │  gRPC server stop
    │ shutdown     │  manager.cleanup(): pipeline.stop(timeout), storage.close()
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortener.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

Error Mapping
=============
::
    InvalidArgumentError / RequestValidationError  400
    UnauthenticatedError                           401
    ForbiddenError                                 403
    NotFoundError                                  404
    GoneError                                      410
    OverloadedError / ShuttingDownError            503
    UnavailableError / InternalError               500
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

from shortener.config import Settings, get_settings
from shortener.dependencies import ServiceManager
from shortener.exceptions import (
    ForbiddenError,
    GoneError,
    InvalidArgumentError,
    NotFoundError,
    OverloadedError,
    ShortenerError,
    ShuttingDownError,
    UnauthenticatedError,
)
from shortener.middleware import AuthMiddleware, GzipRequestMiddleware, RequestLoggingMiddleware
from shortener.routes import router
from shortener.rpc.server import create_server

__all__ = ["create_app", "status_for", "app"]

_STATUS_BY_ERROR: list[tuple[type[ShortenerError], int]] = [
    (InvalidArgumentError, 400),
    (UnauthenticatedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (GoneError, 410),
    (OverloadedError, 503),
    (ShuttingDownError, 503),
]


def status_for(exc: ShortenerError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def _shortener_error_handler(request: Request, exc: ShortenerError) -> JSONResponse:
    status_code = status_for(exc)
    logger = request.app.state.manager.logger
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected with {status_code}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    content = {"detail": "Malformed request", "errors": jsonable_encoder(exc.errors())}
    return JSONResponse(status_code=400, content=content)


def create_app(settings: Optional[Settings] = None, manager: Optional[ServiceManager] = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration; defaults to ``get_settings()``
        manager: Pre-built service manager (tests inject one with their own storage)

    Returns:
        FastAPI: Application whose lifespan owns the manager and the gRPC server
    """
    settings = settings or get_settings()
    manager = manager or ServiceManager(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        await manager.initialize()
        grpc_server = None
        if settings.GRPC_ENABLED:
            grpc_server, _ = create_server(manager, settings.GRPC_ADDRESS)
            await grpc_server.start()
            manager.logger.info(f"gRPC server listening on {settings.GRPC_ADDRESS}")
        yield
        # Shutdown
        if grpc_server is not None:
            await grpc_server.stop(settings.DELETE_SHUTDOWN_TIMEOUT_SECONDS)
        await manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="URL shortener with asynchronous batched deletion",
        lifespan=lifespan,
    )
    app.state.manager = manager

    app.add_exception_handler(ShortenerError, _shortener_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # Added innermost first.
    app.add_middleware(AuthMiddleware)
    app.add_middleware(GzipRequestMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=settings.GZIP_MINIMUM_SIZE)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router)
    return app


app = create_app()
