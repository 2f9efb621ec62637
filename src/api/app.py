"""
FastAPI Application Factory.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production
    uvicorn api.app:get_app --factory --host 0.0.0.0 --port 8080 --workers 1

Feeds live in process memory (see feed.registry), so a deployment with
several workers needs sticky routing per viewer.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup configures logging; shutdown drops every open feed.
    """
    settings = get_settings()

    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting swipe feed API",
        environment=settings.environment,
        port=settings.port,
    )

    yield

    from feed.registry import get_feed_registry
    registry = get_feed_registry()
    logger.info("Shutting down swipe feed API", open_feeds=len(registry))
    registry.clear()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title="Swipe Feed API",
        description="""
        Personalized swipe candidate feed for the barter marketplace.

        ## Main Endpoints

        - `/api/feed/open` - Open a feed with filters
        - `/api/feed/{feed_id}` - Current card and feed state
        - `/api/feed/{feed_id}/like|dislike|undo` - Swipe decisions

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Detailed health with dependency status
        - `/ready` - Kubernetes readiness check
        - `/live` - Kubernetes liveness check
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # =========================================================================
    # Middleware (order matters - first added = outermost)
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracing (adds X-Request-ID, logs timing)
    app.add_middleware(RequestTracingMiddleware)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.feed import router as feed_router
    app.include_router(feed_router)

    return app


def get_app() -> FastAPI:
    """Build the application instance (for ASGI servers)."""
    return create_app()
