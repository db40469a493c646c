"""FastAPI application factory for MaturaMente.

This module creates and configures the FastAPI application with:
- Lifespan management for startup/shutdown events
- Middleware configuration (CORS, request ID, logging)
- Exception handlers
- API routers
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from maturamente.config import CacheBackend, Settings, get_settings
from maturamente.core.exceptions import MaturaMenteError
from maturamente.core.logging import (
    clear_correlation_id,
    configure_logging,
    get_logger,
    set_correlation_id,
)
from maturamente.schemas.common import HealthCheckResponse
from maturamente.services.cache import (
    InMemorySignedUrlCache,
    RedisSignedUrlCache,
    SignedUrlCache,
    set_signed_url_cache,
)

# Initialize logger for this module
logger = get_logger(__name__)


def build_signed_url_cache(settings: Settings) -> tuple[SignedUrlCache, Redis | None]:
    """Create the configured cache backend and, for Redis, its client."""
    if settings.signed_url_cache_backend is CacheBackend.REDIS:
        redis = Redis.from_url(settings.redis_url)
        return RedisSignedUrlCache(redis), redis
    return InMemorySignedUrlCache(max_entries=settings.signed_url_cache_max_entries), None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan events.

    Handles initialization and cleanup of:
    - Logging configuration
    - Database connection pool
    - Signed URL cache (and its Redis connection)

    Args:
        app: The FastAPI application instance

    Yields:
        None: Control back to the application
    """
    from maturamente.core.database import close_db, init_db

    settings: Settings = app.state.settings

    # ========================================
    # Startup
    # ========================================
    # Configure logging first
    configure_logging(settings)

    # Re-get logger after configuration
    startup_logger = get_logger(__name__)

    # Initialize database connection pool
    await init_db(settings)

    cache, redis = build_signed_url_cache(settings)
    set_signed_url_cache(cache)
    app.state.redis = redis

    startup_logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.app_env.value,
        cache_backend=settings.signed_url_cache_backend.value,
        debug=settings.debug,
    )

    yield

    # ========================================
    # Shutdown
    # ========================================
    set_signed_url_cache(None)
    if redis is not None:
        await redis.aclose()
        app.state.redis = None

    await close_db()

    startup_logger.info("Application shutting down", app_name=settings.app_name)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    This is the application factory function that creates a fully configured
    FastAPI instance with all middleware, routes, and exception handlers.

    Args:
        settings: Optional settings override for testing

    Returns:
        FastAPI: Configured application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Backend for the MaturaMente study platform: study progress, "
            "note access, study sessions and subscriptions."
        ),
        version=settings.app_version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.redis = None

    # ========================================
    # Middleware
    # ========================================
    configure_middleware(app, settings)

    # ========================================
    # Exception Handlers
    # ========================================
    configure_exception_handlers(app)

    # ========================================
    # Routes
    # ========================================
    configure_routes(app)

    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure application middleware.

    Args:
        app: The FastAPI application instance
        settings: Application settings
    """
    # Session cookies are sent cross-origin only to the web frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.base_url.rstrip("/")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Any) -> Any:
        """Log requests and responses with correlation ID."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        # Set correlation ID for all logs in this request context
        set_correlation_id(request_id)

        request_logger = get_logger("maturamente.request")
        start_time = time.perf_counter()

        request_logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            request_logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error=str(exc),
            )
            raise

        finally:
            clear_correlation_id()


def _validation_message(exc: RequestValidationError) -> tuple[str, str | None]:
    """First error of a validation failure as a message and a field name."""
    errors = exc.errors()
    if not errors:
        return "Validation error", None

    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    field = ".".join(loc) or None
    message = str(first.get("msg", "Validation error")).removeprefix("Value error, ")
    if field and first.get("type") != "value_error":
        message = f"{field}: {message}"
    return message, field


def configure_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers.

    Args:
        app: The FastAPI application instance
    """
    exception_logger = get_logger("maturamente.exceptions")

    @app.exception_handler(MaturaMenteError)
    async def maturamente_exception_handler(
        request: Request, exc: MaturaMenteError
    ) -> JSONResponse:
        """Handle application exceptions with structured error response."""
        request_id = getattr(request.state, "request_id", None)

        # Log at appropriate level based on status code
        if exc.status_code >= 500:
            exception_logger.error(
                "Application error",
                error_code=exc.code,
                error_message=exc.message,
                status_code=exc.status_code,
                path=request.url.path,
            )
        else:
            exception_logger.warning(
                "Client error",
                error_code=exc.code,
                error_message=exc.message,
                status_code=exc.status_code,
                path=request.url.path,
            )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=request_id),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed input as 400 with the first descriptive message."""
        request_id = getattr(request.state, "request_id", None)
        message, field = _validation_message(exc)

        exception_logger.warning(
            "Validation error",
            error_message=message,
            errors=len(exc.errors()),
            path=request.url.path,
        )

        error: dict[str, Any] = {
            "code": "VALIDATION_ERROR",
            "message": message,
            "request_id": request_id,
        }
        if field:
            error["details"] = {"field": field}
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": error},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions with a consistent error response."""
        request_id = getattr(request.state, "request_id", None)

        exception_logger.exception(
            "Unhandled exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "request_id": request_id,
                }
            },
        )


def configure_routes(app: FastAPI) -> None:
    """Configure application routes.

    Args:
        app: The FastAPI application instance
    """

    @app.get(
        "/health/live",
        tags=["Health"],
        summary="Liveness check",
        description="Returns OK if the service is running",
    )
    async def liveness() -> dict[str, str]:
        """Liveness check for container orchestration."""
        return {"status": "ok"}

    @app.get(
        "/health/ready",
        tags=["Health"],
        summary="Readiness check",
        description="Returns OK if the database and cache are reachable",
        response_model=HealthCheckResponse,
    )
    async def readiness(request: Request) -> HealthCheckResponse:
        """Readiness check checking dependent services."""
        from maturamente.core.database import check_db_connection

        db_ok = await check_db_connection()

        cache_ok = True
        redis: Redis | None = request.app.state.redis
        if redis is not None:
            try:
                cache_ok = bool(await redis.ping())
            except Exception as e:
                logger.error("Cache health check failed", error=str(e))
                cache_ok = False

        return HealthCheckResponse(
            status="ok" if (db_ok and cache_ok) else "error",
            checks={
                "database": "ok" if db_ok else "error",
                "cache": "ok" if cache_ok else "error",
            },
        )

    # Include API router
    from maturamente.api.router import router as api_router

    app.include_router(api_router, prefix="/api")


def cli() -> None:
    """CLI entry point for running the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "maturamente.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
