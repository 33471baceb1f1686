from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from usagegate.app.api import auth_router, ping_router
from usagegate.app.core.config import settings
from usagegate.app.core.logging import get_logger, setup_logging
from usagegate.app.core.store import get_store
from usagegate.app.db.async_session import (
    close_async_engine,
    get_async_session,
    init_async_db,
)
from usagegate.app.exceptions import RateLimitedError, UsageGateError
from usagegate.app.middleware.request_id import RequestIdMiddleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create tables and check the store on startup; release both on shutdown."""
        if settings.db_create_tables:
            await init_async_db()

        store = get_store()
        await store.ping()

        logger.info(
            "Application startup complete",
            extra={
                "store": type(store).__name__,
                "window_s": settings.rate_limit_window_seconds,
                "max_calls_per_window": settings.max_calls_per_window,
                "debug_mode": settings.debug,
            },
        )

        yield

        await store.close()
        await close_async_engine()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="usagegate",
        description="Session-gated, rate-limited ping with usage leaderboard and distinct-caller estimate",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestIdMiddleware)

    app.include_router(auth_router)
    app.include_router(ping_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with store and database status."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        try:
            store = get_store()
            await store.ping()
            health_status["components"]["store"] = {
                "status": "ok",
                "type": "redis" if settings.redis_enabled else "memory",
            }
        except UsageGateError as e:
            health_status["status"] = "degraded"
            health_status["components"]["store"] = {"status": "error", "error": e.message}

        try:
            async with get_async_session() as session:
                await session.execute(text("SELECT 1"))
            health_status["components"]["database"] = {"status": "ok"}
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {
                "status": "error",
                "error": str(e)[:100],  # Truncate for security
            }

        return health_status

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
        """Handle RateLimitedError and return HTTP 429 with Retry-After."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(UsageGateError)
    async def usagegate_error_handler(request: Request, exc: UsageGateError) -> JSONResponse:
        """Handle AuthError and store failures with their mapped status."""
        if exc.status_code >= 500:
            logger.error(
                f"{exc.error_code}: {exc.message}",
                extra={"request_id": getattr(request.state, "request_id", None)},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; the full details are logged.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )

        content = {
            "error": "internal_error",
            "message": str(exc) if settings.debug else "Internal server error",
            "request_id": request_id,
        }
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
