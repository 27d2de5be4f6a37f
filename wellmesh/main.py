"""WellMesh Backend - FastAPI Application Factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wellmesh.api import api_router
from wellmesh.api.health import router as health_router
from wellmesh.core import async_session_maker, get_kv_store, settings, setup_logging
from wellmesh.core.redis import close_redis
from wellmesh.middleware import SecurityHeadersMiddleware, register_exception_handlers

# Import all models to ensure they're registered with Base
from wellmesh.models import RefreshToken, User  # noqa: F401
from wellmesh.services.auth import AuthService
from wellmesh.services.cache import CacheService

logger = logging.getLogger(__name__)

REFRESH_TOKEN_PURGE_INTERVAL = 3600


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


async def _refresh_token_purge_loop() -> None:
    """Periodically remove expired refresh token records."""
    while True:
        await asyncio.sleep(REFRESH_TOKEN_PURGE_INTERVAL)
        try:
            async with async_session_maker() as db:
                service = AuthService(db, CacheService(get_kv_store()))
                await service.purge_expired_refresh_tokens()
        except Exception:
            logger.exception("Error purging expired refresh tokens")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    purge_task = asyncio.create_task(_refresh_token_purge_loop(), name="refresh-token-purge")
    purge_task.add_done_callback(task_done_callback)

    yield

    logger.info("Shutting down...")
    purge_task.cancel()
    try:
        await purge_task
    except asyncio.CancelledError:
        pass

    await close_redis()
    get_kv_store.cache_clear()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Session, role and rate-limit gated user API",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    register_exception_handlers(app)

    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    # so that CORS headers are present on ALL responses, including 401s and 429s.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining"],
    )

    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # API at /api/wellmesh

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {"name": settings.app_name, "version": settings.app_version}

    return app


# Application instance
app = create_app()
