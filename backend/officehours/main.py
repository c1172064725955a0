"""
Office Hours Booking Engine - Main Application Entry Point

HTTP surface over the booking engine:
- Capacity-safe slot booking with automatic waitlisting and promotion
- Guarded attendance state machine (manual, bulk and Meet-sync marking)
- Side-effect intents (CRM sync, no-show emails) dispatched after commit
- Batch attendee context with a 10 minute cache
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from officehours.core.config import get_settings
from officehours.core.errors import register_exception_handlers
from officehours.core.logging import setup_logging, get_logger
from officehours.core.metrics import metrics_endpoint
from officehours.api.router import api_router
from officehours.api.middleware import RequestLoggingMiddleware
from officehours.infrastructure.redis_client import get_redis
from officehours.services.engine import BookingEngine

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    if getattr(app.state, "engine", None) is None:
        app.state.engine = BookingEngine.from_settings(settings)
    engine: BookingEngine = app.state.engine

    if settings.REDIS_ENABLED:
        if await get_redis():
            logger.info("redis_ready")
        else:
            logger.warning("redis_unavailable", message="Redis-backed queue and cache will fail open")

    await engine.start()

    yield

    await engine.stop()
    logger.info("application_shutdown")


def create_app(engine: Optional[BookingEngine] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Office-hours booking engine: slot capacity, waitlists and attendance",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.engine = engine

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for Docker and load balancers."""
        queue = app.state.engine.queue if app.state.engine else None
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "intent_queue": type(queue).__name__ if queue else None,
        }

    @app.get("/metrics", include_in_schema=False)
    def metrics():
        return metrics_endpoint()

    return app


app = create_app()
