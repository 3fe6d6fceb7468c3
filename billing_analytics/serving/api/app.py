"""
FastAPI Application Factory

Creates and configures the analytics API application.
"""

from typing import Any, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from billing_analytics.aggregation import AggregationEngine
from billing_analytics.config import get_settings
from billing_analytics.ingestion import ChangeFeed
from billing_analytics.serving.api.middleware import RequestLoggingMiddleware
from billing_analytics.serving.api.routes import analytics_router, feed_router, health_router, metrics_router


def create_api_app(
    engine: Optional[AggregationEngine] = None,
    lifespan: Optional[Callable[[FastAPI], Any]] = None,
    feed: Optional[ChangeFeed] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        engine: Engine to serve; otherwise the lifespan attaches one to
            ``app.state.engine`` at startup
        lifespan: Application lifespan context manager
        feed: Change feed the engine subscribed to, used by snapshot ingest

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()
    app = FastAPI(
        title="Billing Analytics API",
        description="Real-time sales and inventory metrics for the billing dashboard",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.feed = feed

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])
    app.include_router(feed_router, prefix="/api/v1/feed", tags=["Feed"])
    app.include_router(metrics_router, tags=["Monitoring"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Billing Analytics API",
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
