"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from marketpoints.config import get_settings
from marketpoints.database import close_db, init_db
from marketpoints.health.router import router as health_router
from marketpoints.middleware import setup_middleware
from marketpoints.points.admin_router import router as admin_points_router
from marketpoints.points.router import router as points_router
from marketpoints.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    logger.info("startup_complete", environment=settings.environment, version=settings.app_version)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Points API",
        description="Points ledger, withdrawals and point requests for the marketplace backend",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(points_router)
    app.include_router(admin_points_router)

    return app


app = create_app()
