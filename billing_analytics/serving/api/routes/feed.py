"""
Snapshot Ingest Endpoint

Lets a billing application running in another process push full collection
snapshots into the in-memory change feed. Kafka deployments publish to the
snapshot topics instead.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
import structlog

from billing_analytics.aggregation import AggregationEngine
from billing_analytics.exceptions import FeedUnavailable
from billing_analytics.ingestion import ChangeFeed, InMemoryChangeFeed
from billing_analytics.serving.api.dependencies import get_engine, get_feed

router = APIRouter()
logger = structlog.get_logger(__name__)


class SnapshotPayload(BaseModel):
    """Complete listing of one collection"""
    records: List[Dict[str, Any]]


class SnapshotAccepted(BaseModel):
    collection: str
    sequence: int
    records: int


@router.post("/{collection}/snapshot", response_model=SnapshotAccepted, status_code=202)
async def publish_snapshot(
    collection: str,
    payload: SnapshotPayload,
    engine: AggregationEngine = Depends(get_engine),
    feed: ChangeFeed = Depends(get_feed),
) -> SnapshotAccepted:
    """
    Publish a full snapshot of ``bills`` or ``products``.

    Records are validated by the engine; malformed ones are skipped and show up
    as anomalies rather than failing the request.
    """
    if not isinstance(feed, InMemoryChangeFeed):
        raise HTTPException(status_code=409, detail="Snapshot ingest requires the memory feed backend")
    if collection not in (engine.transactions_collection, engine.catalog_collection):
        raise HTTPException(status_code=404, detail=f"Untracked collection: {collection}")

    try:
        event = feed.publish(collection, payload.records)
    except FeedUnavailable as e:
        raise HTTPException(status_code=503, detail=e.message)

    logger.info("Snapshot ingested", collection=collection, sequence=event.sequence, records=len(event.records))
    return SnapshotAccepted(collection=collection, sequence=event.sequence, records=len(event.records))
