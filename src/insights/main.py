"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and Redis initialization, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.insights.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.insights.api.v1.router import router as v1_router
from src.insights.config import get_settings
from src.insights.core.database import close_db, get_session, init_db
from src.insights.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.insights.core.redis import close_redis, get_redis_pool
from src.insights.events.bus import StatusBus
from src.insights.meetings.repository import MeetingRepository
from src.insights.pipeline.context import build_pipeline_context


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Redis and Sentry on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    redis = get_redis_pool()
    repository = MeetingRepository(session_factory=get_session)

    app.state.meeting_repository = repository
    app.state.status_bus = StatusBus(redis, maxlen=settings.STATUS_STREAM_MAXLEN)
    # A fresh PipelineContext per invocation; nothing is shared between runs
    app.state.pipeline_context_factory = partial(
        build_pipeline_context, settings, repository, redis
    )
    log.info(
        "app_started",
        environment=settings.ENVIRONMENT.value,
        transcription_model=settings.TRANSCRIPTION_MODEL,
        extraction_model=settings.EXTRACTION_MODEL,
    )

    yield

    await close_redis()
    await close_db()
    log.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meeting Insights API",
        version="0.1.0",
        description="Transcription and structured analysis of recorded meetings",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
