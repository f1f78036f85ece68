"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from coremine.config import get_settings
from coremine.database import close_db, get_session_factory, init_db
from coremine.epochs.router import router as epochs_router
from coremine.epochs.service import ensure_current_epoch
from coremine.errors import CoreMineError
from coremine.health.router import router as health_router
from coremine.middleware import setup_middleware
from coremine.mining.router import rewards_router
from coremine.mining.router import router as mining_router
from coremine.nfts.router import router as nfts_router
from coremine.redis_client import close_redis, get_redis, init_redis
from coremine.streaks.router import router as streaks_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Open (or roll over) the current epoch so the first request is cheap.
    try:
        async with get_session_factory()() as db:
            await ensure_current_epoch(db, get_redis())
    except CoreMineError:
        logger.warning("Epoch check at startup failed; the worker will retry", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CoreMine API",
        description="Mining sessions, epochs, reward settlement and daily streaks",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(rewards_router)
    app.include_router(mining_router)
    app.include_router(epochs_router)
    app.include_router(streaks_router)
    app.include_router(nfts_router)

    return app


app = create_app()
