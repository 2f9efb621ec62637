"""
Health check endpoints.

Provides endpoints for monitoring application health and status.
"""

import asyncio
from typing import Any, Dict

from fastapi import APIRouter

from config.database import get_supabase_client_optional, check_tables
from config.settings import get_settings
from feed.candidate_store import LISTINGS_TABLE, PROFILES_TABLE
from feed.ranking_context import FAVORITES_TABLE, FEATURED_TABLE, SUBSCRIPTIONS_TABLE
from feed.registry import get_feed_registry
from feed.swipe_ledger import SWIPES_TABLE


SERVICE_NAME = "swipe-feed-api"

# Listings and the ledger are required; the rest only feed ranking signals
REQUIRED_TABLES = (LISTINGS_TABLE, SWIPES_TABLE)
SIGNAL_TABLES = (PROFILES_TABLE, FEATURED_TABLE, SUBSCRIPTIONS_TABLE, FAVORITES_TABLE)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
    }


@router.get("/health/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """
    Detailed health check with dependency status.

    Unreadable listing or swipe tables make the service unhealthy; an
    unreadable signal table only degrades ranking.
    """
    settings = get_settings()
    registry = get_feed_registry()

    client = get_supabase_client_optional()
    if client is None:
        tables: Dict[str, Any] = {}
        status = "unhealthy"
    else:
        tables = await asyncio.to_thread(check_tables, client, REQUIRED_TABLES + SIGNAL_TABLES)
        if any(tables[t] for t in REQUIRED_TABLES):
            status = "unhealthy"
        elif any(tables[t] for t in SIGNAL_TABLES):
            status = "degraded"
        else:
            status = "healthy"

    return {
        "status": status,
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "checks": {
            "supabase": "configured" if client is not None else "not_configured",
            "tables": {name: error or "ok" for name, error in tables.items()},
            "feeds": registry.get_stats(),
        },
    }


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """
    Kubernetes-style readiness check.

    Returns 200 if the service is ready to accept traffic.
    """
    client = get_supabase_client_optional()
    if client is None:
        return {"status": "not_ready", "reason": "database_not_configured"}

    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes-style liveness check."""
    return {"status": "alive"}
