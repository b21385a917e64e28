"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from captiongate import __version__
from captiongate.api.admin.router import admin_router
from captiongate.api.middleware.logging import RequestLoggingMiddleware
from captiongate.api.middleware.request_id import RequestIDMiddleware
from captiongate.api.v1.router import v1_router
from captiongate.common.errors import register_error_handlers
from captiongate.common.logging import configure_logging
from captiongate.config import Settings, get_settings
from captiongate.core.storage.factory import build_components
from captiongate.core.storage.sweeper import FallbackSweeper
from captiongate.db.session import build_engine, build_session_factory, create_tables
from captiongate.models.base import utcnow
from captiongate.providers.base import CaptionBackend
from captiongate.providers.registry import close_http_client, get_caption_backend
from captiongate.services.admin import AdminService
from captiongate.services.generation import GenerationService

logger = structlog.stdlib.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    configure_logging(settings.logging.level, settings.logging.format)

    log = structlog.stdlib.get_logger()
    await log.ainfo(
        "captiongate.startup",
        version=__version__,
        env=settings.env,
        database=settings.database.url.split("@")[-1],
        quota_backend=settings.quota.backend.value,
        cache_enabled=settings.cache.enabled,
        fallback_enabled=settings.storage.fallback_enabled,
    )

    try:
        await create_tables(app.state.engine)
    except Exception as e:
        # Served from the memory fallbacks until the database shows up
        await log.awarning("captiongate.create_tables.failed", error=str(e))

    sweeper: FallbackSweeper = app.state.sweeper
    sweeper.start()

    yield

    await sweeper.stop()
    await close_http_client()
    if app.state.components.redis is not None:
        await app.state.components.redis.aclose()
    await app.state.engine.dispose()
    await log.ainfo("captiongate.shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    redis_client: aioredis.Redis | None = None,
    caption_backend: CaptionBackend | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Application factory, called by Uvicorn. Tests pass their own engine and backend."""
    settings = settings or get_settings()

    app = FastAPI(
        title="captiongate",
        description="Result cache, generation quotas and abuse blocking in front of a caption backend.",
        version=__version__,
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
        lifespan=lifespan,
    )

    engine = engine or build_engine(settings.database)
    session_factory = session_factory or build_session_factory(engine)
    components = build_components(settings, session_factory, redis_client=redis_client, clock=clock)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.components = components
    app.state.generation_service = GenerationService(
        fingerprints=components.fingerprints,
        cache=components.cache,
        limiter=components.limiter,
        blocklist=components.blocklist,
        backend=caption_backend or get_caption_backend(settings.backend),
        quota=settings.quota,
        cache_enabled=settings.cache.enabled,
    )
    app.state.admin_service = AdminService(
        cache=components.cache,
        limiter=components.limiter,
        blocklist=components.blocklist,
        quota=settings.quota,
        default_clean_days=settings.cache.default_clean_days,
    )
    app.state.sweeper = FallbackSweeper(
        components.fallbacks,
        interval_seconds=settings.storage.sweep_interval_seconds,
        clock=clock,
    )

    # Middleware (order matters; last added is outermost)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.env == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(v1_router)
    app.include_router(admin_router)

    return app
