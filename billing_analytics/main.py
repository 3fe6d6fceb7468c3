"""
Billing Analytics Service

Main entry point: wires the configured change feed, the optional point-query
store and the aggregation engine into the HTTP application.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import structlog

from billing_analytics.aggregation import AggregationEngine
from billing_analytics.config import get_settings
from billing_analytics.config.logging import configure_logging
from billing_analytics.database import (
    SqlPointQueryClient,
    close_database,
    get_session_factory,
    init_database,
)
from billing_analytics.ingestion import ChangeFeed, InMemoryChangeFeed, KafkaChangeFeed
from billing_analytics.serving.api import create_api_app

logger = structlog.get_logger(__name__)


def build_feed() -> ChangeFeed:
    """Change feed selected by FEED_BACKEND"""
    settings = get_settings()
    if settings.feed.backend == "kafka":
        return KafkaChangeFeed(settings.kafka)
    return InMemoryChangeFeed()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging()

    logger.info("Starting Billing Analytics API", environment=settings.app_env, feed=settings.feed.backend)

    query_client: Optional[SqlPointQueryClient] = None
    if settings.database.enabled:
        try:
            await init_database()
            query_client = SqlPointQueryClient(get_session_factory())
        except Exception as e:
            logger.warning("Database init failed, refresh disabled", error=str(e))

    feed = build_feed()
    engine = AggregationEngine(feed, query_client=query_client)
    engine.subscribe()
    app.state.engine = engine
    app.state.feed = feed

    consumer_task: Optional[asyncio.Task] = None
    if isinstance(feed, KafkaChangeFeed):
        consumer_task = asyncio.create_task(feed.start())

    yield

    logger.info("Shutting down...")
    if consumer_task is not None:
        await feed.stop()
        try:
            await asyncio.wait_for(consumer_task, timeout=10)
        except asyncio.TimeoutError:
            logger.warning("Snapshot consumer did not stop in time")
        except Exception as e:
            logger.error("Snapshot consumer exited with error", error=str(e))
    engine.unsubscribe()
    await close_database()


app = create_api_app(lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
