"""
Ingestion Module
"""
from .change_feed import ChangeFeed, FeedHandle, InMemoryChangeFeed, SnapshotEvent
from .kafka_feed import KafkaChangeFeed

__all__ = [
    "ChangeFeed",
    "FeedHandle",
    "InMemoryChangeFeed",
    "KafkaChangeFeed",
    "SnapshotEvent",
]
