"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from billing_analytics.aggregation import AggregationEngine
from billing_analytics.config import get_settings
from billing_analytics.database.connection import check_database_health
from billing_analytics.serving.api.dependencies import get_engine

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: AggregationEngine = Depends(get_engine)) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Change feed subscription
    - Point-query database connectivity, when enabled
    """
    settings = get_settings()
    checks: Dict[str, Any] = {}
    overall_status = "healthy"

    snapshot = engine.get_snapshot()
    if not engine.subscribed:
        checks["feed"] = {"status": "unsubscribed"}
        overall_status = "unhealthy"
    elif snapshot.stale:
        checks["feed"] = {"status": "stale", "lost_collections": sorted(engine.lost_collections)}
        overall_status = "degraded"
    else:
        checks["feed"] = {"status": "healthy", "bill_count": snapshot.bill_count}

    db_health = await check_database_health()
    checks["database"] = db_health
    if db_health.get("status") == "unhealthy" and overall_status == "healthy":
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness check endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    engine: AggregationEngine = Depends(get_engine),
) -> Dict[str, str]:
    """
    Kubernetes readiness check endpoint.

    Ready while the engine holds a live subscription; stale metrics are still
    served but the instance is taken out of rotation.
    """
    if not engine.subscribed:
        response.status_code = 503
        return {"status": "not_ready", "reason": "feed_unsubscribed"}
    if engine.get_snapshot().stale:
        response.status_code = 503
        return {"status": "not_ready", "reason": "feed_unavailable"}
    return {"status": "ready"}
