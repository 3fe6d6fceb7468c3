"""
Unit Tests - Kafka Change Feed
"""
import asyncio
import json
from types import SimpleNamespace

import pytest
from aiokafka.errors import KafkaConnectionError

from billing_analytics.config.settings import KafkaSettings
from billing_analytics.exceptions import FeedUnavailable
from billing_analytics.ingestion import KafkaChangeFeed
from billing_analytics.ingestion.kafka_feed import decode_snapshot


@pytest.fixture
def kafka_feed() -> KafkaChangeFeed:
    return KafkaChangeFeed(KafkaSettings(topic_prefix="billing.snapshots."))


def message(topic: str, value, offset: int = 0):
    return SimpleNamespace(topic=topic, value=value, offset=offset)


class TestDecodeSnapshot:
    """Tests for snapshot message decoding"""

    def test_envelope_with_sequence(self):
        """Test the sequence in the body wins over the offset"""
        body = json.dumps({"sequence": 7, "records": [{"id": "p1"}]}).encode()

        event = decode_snapshot("products", body, offset=99)

        assert event.collection == "products"
        assert event.sequence == 7
        assert event.records == ({"id": "p1"},)

    def test_bare_list_uses_offset(self):
        """Test a plain list is sequenced by its offset"""
        event = decode_snapshot("bills", "[]", offset=12)

        assert event.records == ()
        assert event.sequence == 12

    def test_envelope_without_sequence_uses_offset(self):
        """Test a missing sequence falls back to the offset"""
        event = decode_snapshot("bills", {"records": []}, offset=3)

        assert event.sequence == 3

    @pytest.mark.parametrize("body", [
        b"not json",
        json.dumps({"items": []}),
        json.dumps({"records": [], "sequence": "1"}),
        json.dumps(42),
    ])
    def test_rejects_non_snapshots(self, body):
        """Test bodies that are not snapshots raise ValueError"""
        with pytest.raises(ValueError):
            decode_snapshot("bills", body, offset=0)


class TestKafkaChangeFeed:
    """Tests for KafkaChangeFeed without a broker"""

    def test_subscribe_does_not_connect(self, kafka_feed):
        """Test subscribe only registers the listener"""
        kafka_feed.subscribe("bills", lambda event: None)

        assert not kafka_feed.running
        assert kafka_feed._topics() == ["billing.snapshots.bills"]

    def test_dispatch_delivers_to_collection_listeners(self, kafka_feed):
        """Test a decoded message reaches listeners of its collection only"""
        bills, products = [], []
        kafka_feed.subscribe("bills", bills.append)
        kafka_feed.subscribe("products", products.append)

        delivered = kafka_feed.dispatch(message("billing.snapshots.bills", b"[]", offset=5))

        assert delivered
        assert [e.sequence for e in bills] == [5]
        assert products == []

    def test_dispatch_discards_invalid_message(self, kafka_feed):
        """Test undecodable messages are dropped"""
        received = []
        kafka_feed.subscribe("bills", received.append)

        assert not kafka_feed.dispatch(message("billing.snapshots.bills", b"{broken"))
        assert received == []

    def test_unsubscribe_stops_delivery(self, kafka_feed):
        """Test released handles receive nothing"""
        received = []
        handle = kafka_feed.subscribe("bills", received.append)

        kafka_feed.unsubscribe(handle)
        kafka_feed.dispatch(message("billing.snapshots.bills", b"[]"))

        assert received == []

    async def test_start_without_subscriptions(self, kafka_feed):
        """Test start refuses to run with nothing to consume"""
        with pytest.raises(RuntimeError):
            await kafka_feed.start()

    async def test_reconnects_after_connection_failure(self, monkeypatch):
        """Test a failed connect reaches on_error and the feed retries"""
        kafka_feed = KafkaChangeFeed(KafkaSettings(topic_prefix="billing.snapshots.", reconnect_backoff_ms=1))
        errors, events = [], []
        kafka_feed.subscribe("bills", events.append, errors.append)

        class UnreachableConsumer:
            async def start(self):
                raise KafkaConnectionError("no brokers")

            async def stop(self):
                pass

        class OneMessageConsumer:
            def __init__(self):
                self.stopped = False

            async def start(self):
                pass

            async def stop(self):
                self.stopped = True

            async def _messages(self):
                yield message("billing.snapshots.bills", b"[]", offset=1)
                await kafka_feed.stop()

            def __aiter__(self):
                return self._messages()

        healthy = OneMessageConsumer()
        consumers = iter([UnreachableConsumer(), healthy])
        monkeypatch.setattr(kafka_feed, "_create_consumer", lambda: next(consumers))

        await asyncio.wait_for(kafka_feed.start(), timeout=5)

        assert len(errors) == 1
        assert isinstance(errors[0], FeedUnavailable)
        assert errors[0].collection == "bills"
        assert [e.sequence for e in events] == [1]
        assert healthy.stopped
        assert not kafka_feed.running

    async def test_stop_during_backoff_ends_loop(self, monkeypatch):
        """Test stop wakes the feed from its reconnect delay"""
        kafka_feed = KafkaChangeFeed(KafkaSettings(reconnect_backoff_ms=60000, reconnect_backoff_max_ms=60000))
        errors = []
        kafka_feed.subscribe("bills", lambda event: None, errors.append)

        class UnreachableConsumer:
            async def start(self):
                raise KafkaConnectionError("no brokers")

            async def stop(self):
                pass

        monkeypatch.setattr(kafka_feed, "_create_consumer", lambda: UnreachableConsumer())

        task = asyncio.create_task(kafka_feed.start())
        while not errors:
            await asyncio.sleep(0)
        await kafka_feed.stop()
        await asyncio.wait_for(task, timeout=5)

        assert len(errors) == 1
        assert not kafka_feed.running
