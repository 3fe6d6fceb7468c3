"""
Kafka Change Feed

Receives collection snapshots from Kafka. Every collection maps to one topic
(``<topic_prefix><collection>``), ideally log-compacted, whose messages each
carry a complete snapshot:

    {"sequence": 42, "records": [{...}, {...}]}

A bare JSON list is accepted as well; its Kafka offset then serves as the
sequence number.
"""

import asyncio
import json
from typing import Any, List, Optional

import structlog
from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from prometheus_client import Counter

from billing_analytics.config import get_settings
from billing_analytics.config.settings import KafkaSettings
from billing_analytics.ingestion.change_feed import (
    ChangeFeed,
    ErrorListener,
    FeedHandle,
    SnapshotEvent,
    SnapshotListener,
    SubscriptionRegistry,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

FEED_MESSAGES = Counter(
    "billing_feed_messages_total",
    "Total number of snapshot messages consumed",
    ["topic", "status"],
)


def decode_snapshot(collection: str, value: Any, offset: int) -> SnapshotEvent:
    """
    Decode a snapshot message body.

    Args:
        collection: Collection the topic carries
        value: Raw message value (bytes, str or already-decoded JSON)
        offset: Kafka offset, used as sequence when the body has none

    Returns:
        SnapshotEvent for the collection

    Raises:
        ValueError: If the body is not a snapshot
    """
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        value = json.loads(value)

    if isinstance(value, list):
        return SnapshotEvent(collection=collection, records=tuple(value), sequence=offset)

    if isinstance(value, dict) and isinstance(value.get("records"), list):
        sequence = value.get("sequence", offset)
        if isinstance(sequence, bool) or not isinstance(sequence, int):
            raise ValueError("snapshot sequence must be an integer")
        return SnapshotEvent(collection=collection, records=tuple(value["records"]), sequence=sequence)

    raise ValueError("message is not a collection snapshot")


class KafkaChangeFeed(ChangeFeed):
    """
    Change feed backed by Kafka snapshot topics.

    ``subscribe`` registers interest in a collection; the connection itself is
    made by ``start``, which then consumes until ``stop`` is called. A lost
    connection is reported to every listener's ``on_error`` and retried after
    a backoff delay (``KAFKA_RECONNECT_BACKOFF_MS``, doubling up to
    ``KAFKA_RECONNECT_BACKOFF_MAX_MS``).

    Example:
        feed = KafkaChangeFeed()
        engine = AggregationEngine(feed)
        engine.subscribe()
        await feed.start()
    """

    def __init__(self, config: Optional[KafkaSettings] = None):
        self.config = config or get_settings().kafka
        self._registry = SubscriptionRegistry()
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._running = False
        self._stopped = asyncio.Event()
        self._initial_backoff_s = self.config.reconnect_backoff_ms / 1000
        self._backoff_s = self._initial_backoff_s

    @property
    def running(self) -> bool:
        return self._running

    def _topics(self) -> List[str]:
        return [self.config.topic_for(c) for c in self._registry.collections()]

    def _collection_for(self, topic: str) -> str:
        return topic[len(self.config.topic_prefix):] if topic.startswith(self.config.topic_prefix) else topic

    def subscribe(
        self,
        collection: str,
        listener: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> FeedHandle:
        handle = self._registry.add(collection, listener, on_error)
        if self._consumer is not None and self._running:
            self._consumer.subscribe(topics=self._topics())
        logger.info(f"Registered snapshot listener for {self.config.topic_for(collection)}")
        return handle

    def unsubscribe(self, handle: FeedHandle) -> None:
        self._registry.remove(handle)

    def _create_consumer(self) -> AIOKafkaConsumer:
        """Create and configure Kafka consumer"""
        return AIOKafkaConsumer(
            *self._topics(),
            bootstrap_servers=self.config.bootstrap_servers,
            group_id=self.config.consumer_group,
            auto_offset_reset=self.config.auto_offset_reset,
            enable_auto_commit=True,
            session_timeout_ms=self.config.session_timeout_ms,
            heartbeat_interval_ms=self.config.heartbeat_interval_ms,
        )

    def dispatch(self, message: Any) -> bool:
        """Decode one consumed message and deliver it to listeners"""
        collection = self._collection_for(message.topic)
        try:
            event = decode_snapshot(collection, message.value, message.offset)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(
                "Discarding undecodable snapshot message",
                topic=message.topic,
                offset=message.offset,
                error=str(e),
            )
            FEED_MESSAGES.labels(topic=message.topic, status="invalid").inc()
            return False

        self._registry.deliver(event)
        FEED_MESSAGES.labels(topic=message.topic, status="success").inc()
        return True

    def _fail(self, reason: str) -> None:
        logger.error("Kafka change feed unavailable", reason=reason)
        self._registry.fail(reason)

    async def _consume(self) -> None:
        """Run one connection until it is lost or the feed is stopped"""
        consumer = self._create_consumer()
        self._consumer = consumer
        try:
            await consumer.start()
            logger.info("Kafka change feed connected", topics=self._topics())
            self._backoff_s = self._initial_backoff_s

            async for message in consumer:
                if not self._running:
                    break
                self.dispatch(message)
        finally:
            if self._consumer is consumer:
                self._consumer = None
                await consumer.stop()

    async def start(self) -> None:
        """
        Consume snapshots until stopped, reconnecting after every lost
        connection with a doubling delay.

        Each loss is reported to the listeners' ``on_error``; the delay resets
        once a connection is established again.
        """
        if not self._registry.collections():
            raise RuntimeError("No collections subscribed")

        logger.info(
            "Starting Kafka change feed",
            topics=self._topics(),
            group_id=self.config.consumer_group,
        )

        self._running = True
        self._stopped.clear()
        self._backoff_s = self._initial_backoff_s

        while self._running:
            try:
                await self._consume()
            except KafkaError as e:
                self._fail(str(e))
            else:
                if self._running:
                    self._fail("Kafka consumer stopped unexpectedly")

            if not self._running:
                break

            delay = self._backoff_s
            self._backoff_s = min(self._backoff_s * 2, self.config.reconnect_backoff_max_ms / 1000)
            logger.info("Reconnecting to Kafka", delay_s=delay)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self._running = False
        logger.info("Kafka change feed stopped")

    async def stop(self) -> None:
        """Stop consuming gracefully"""
        self._running = False
        self._stopped.set()

        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            await consumer.stop()
