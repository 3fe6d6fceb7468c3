"""
Route Dependencies
"""

from fastapi import HTTPException, Request

from billing_analytics.aggregation.engine import AggregationEngine
from billing_analytics.ingestion.change_feed import ChangeFeed


def get_engine(request: Request) -> AggregationEngine:
    """Aggregation engine attached to the running application"""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Aggregation engine not started")
    return engine


def get_feed(request: Request) -> ChangeFeed:
    """Change feed the engine is subscribed to"""
    feed = getattr(request.app.state, "feed", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Change feed not started")
    return feed
