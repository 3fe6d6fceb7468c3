"""
API Routes Module
"""
from .analytics import router as analytics_router
from .feed import router as feed_router
from .health import router as health_router
from .metrics import router as metrics_router

__all__ = [
    "analytics_router",
    "feed_router",
    "health_router",
    "metrics_router",
]
