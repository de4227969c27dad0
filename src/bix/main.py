"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from bix.catalog.router import router as catalog_router
from bix.catalog.seed import seed_catalog
from bix.config import get_settings
from bix.database import close_db, create_all, get_session, init_db
from bix.engine.router import router as engine_router
from bix.guard.rate_limiter import build_rate_limiter
from bix.health.router import router as health_router
from bix.middleware import setup_middleware
from bix.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.rate_limit_backend == "redis":
        await init_redis(settings.redis_url)
    if settings.database_url.startswith("sqlite"):
        # No Alembic run for SQLite; build the schema from metadata
        await create_all()

    if settings.seed_catalog:
        try:
            async for db in get_session():
                await seed_catalog(db)
                break
        except Exception:
            logger.warning("Catalog seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BIX Reward Engine",
        description="Reward issuance, referral and anti-abuse engine for the BIX rewards platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    # One limiter per process; counters only reset by window expiry
    app.state.rate_limiter = build_rate_limiter(settings)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(catalog_router)
    app.include_router(engine_router)

    return app


app = create_app()
