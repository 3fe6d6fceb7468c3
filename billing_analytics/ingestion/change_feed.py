"""
Change Feed Interface

A change feed pushes complete snapshots of tracked collections, never deltas.
Consumers register a listener per collection and receive a ``SnapshotEvent``
each time the collection changes. Retry and backoff belong to the feed
implementation.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple
import uuid

import structlog

from billing_analytics.exceptions import FeedUnavailable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SnapshotEvent:
    """Full point-in-time listing of one collection"""
    collection: str
    records: Tuple[Any, ...]
    sequence: int


@dataclass(frozen=True)
class FeedHandle:
    """Opaque token identifying one collection subscription"""
    collection: str
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex)


SnapshotListener = Callable[[SnapshotEvent], None]
ErrorListener = Callable[[FeedUnavailable], None]


@dataclass
class _Subscription:
    listener: SnapshotListener
    on_error: Optional[ErrorListener] = None


class ChangeFeed(ABC):
    """Abstract base class for snapshot change feeds"""

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        listener: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> FeedHandle:
        """
        Start receiving snapshots of a collection.

        Args:
            collection: Collection name
            listener: Called with every new snapshot
            on_error: Called when the subscription is lost

        Returns:
            Handle to pass to unsubscribe

        Raises:
            FeedUnavailable: If the subscription cannot be established
        """
        pass

    @abstractmethod
    def unsubscribe(self, handle: FeedHandle) -> None:
        """Release a subscription. Unknown or released handles are ignored."""
        pass


class SubscriptionRegistry:
    """Thread-safe bookkeeping of listeners shared by feed implementations"""

    def __init__(self):
        self._subscriptions: Dict[FeedHandle, _Subscription] = {}
        self._lock = threading.Lock()

    def add(
        self,
        collection: str,
        listener: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> FeedHandle:
        handle = FeedHandle(collection=collection)
        with self._lock:
            self._subscriptions[handle] = _Subscription(listener, on_error)
        return handle

    def remove(self, handle: FeedHandle) -> bool:
        with self._lock:
            return self._subscriptions.pop(handle, None) is not None

    def collections(self) -> List[str]:
        with self._lock:
            return sorted({handle.collection for handle in self._subscriptions})

    def count(self, collection: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1 for handle in self._subscriptions
                if collection is None or handle.collection == collection
            )

    def _matching(self, collection: Optional[str]) -> List[Tuple[FeedHandle, _Subscription]]:
        # copy so listeners may unsubscribe while being notified
        with self._lock:
            return [
                (handle, sub) for handle, sub in self._subscriptions.items()
                if collection is None or handle.collection == collection
            ]

    def deliver(self, event: SnapshotEvent) -> int:
        """Hand a snapshot to every listener of its collection"""
        delivered = 0
        for handle, sub in self._matching(event.collection):
            try:
                sub.listener(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Snapshot listener failed",
                    collection=event.collection,
                    handle=handle.handle_id,
                    error=str(e),
                )
        return delivered

    def fail(self, reason: str, collection: Optional[str] = None) -> None:
        """Tell listeners their subscription was lost"""
        for handle, sub in self._matching(collection):
            if sub.on_error is None:
                continue
            try:
                sub.on_error(FeedUnavailable(reason, collection=handle.collection))
            except Exception as e:
                logger.error(
                    "Feed error listener failed",
                    collection=handle.collection,
                    handle=handle.handle_id,
                    error=str(e),
                )


class InMemoryChangeFeed(ChangeFeed):
    """
    Process-local change feed.

    Used when the billing application runs in the same process as the engine
    (it calls ``publish`` after each write) and in tests.

    Example:
        feed = InMemoryChangeFeed()
        feed.subscribe("bills", on_bills)
        feed.publish("bills", [{"id": "b1", "date": "2024-01-01", "total": 100}])
    """

    def __init__(self):
        self._registry = SubscriptionRegistry()
        self._sequences: Dict[str, Iterator[int]] = {}
        self._sequence_lock = threading.Lock()
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def subscriber_count(self, collection: Optional[str] = None) -> int:
        return self._registry.count(collection)

    def subscribe(
        self,
        collection: str,
        listener: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> FeedHandle:
        if not self._connected:
            raise FeedUnavailable("In-memory feed is disconnected", collection=collection)
        handle = self._registry.add(collection, listener, on_error)
        logger.debug("Subscribed to collection", collection=collection, handle=handle.handle_id)
        return handle

    def unsubscribe(self, handle: FeedHandle) -> None:
        if self._registry.remove(handle):
            logger.debug("Unsubscribed from collection", collection=handle.collection, handle=handle.handle_id)

    def _next_sequence(self, collection: str) -> int:
        with self._sequence_lock:
            counter = self._sequences.setdefault(collection, itertools.count(1))
            return next(counter)

    def publish(self, collection: str, records: Iterable[Any]) -> SnapshotEvent:
        """
        Push a full snapshot of a collection to its subscribers.

        Raises:
            FeedUnavailable: If the feed is disconnected
        """
        if not self._connected:
            raise FeedUnavailable("In-memory feed is disconnected", collection=collection)
        event = SnapshotEvent(
            collection=collection,
            records=tuple(records),
            sequence=self._next_sequence(collection),
        )
        self._registry.deliver(event)
        return event

    def disconnect(self, reason: str = "Feed disconnected") -> None:
        """Simulate loss of the upstream connection"""
        self._connected = False
        logger.warning("In-memory feed disconnected", reason=reason)
        self._registry.fail(reason)

    def interrupt(self, collection: str, reason: str = "Subscription lost") -> None:
        """Report loss of one collection's subscription without disconnecting"""
        logger.warning("In-memory subscription interrupted", collection=collection, reason=reason)
        self._registry.fail(reason, collection=collection)

    def reconnect(self) -> None:
        self._connected = True
        logger.info("In-memory feed reconnected")
