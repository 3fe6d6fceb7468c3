"""
Aggregation Engine

Reactive, single-writer owner of the derived sales metrics:
- Subscribes to full-snapshot change notifications for bills and products
- Re-derives totals, daily series, rankings, low-stock and valuation per snapshot
- Publishes immutable MetricsSnapshot objects for pull and push consumers
- Keeps serving the last good state, flagged stale, when the feed is lost
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field, replace
from functools import partial
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import structlog
from prometheus_client import Counter, Gauge, Histogram

from billing_analytics.aggregation.low_stock import LowStockIndex
from billing_analytics.aggregation.ranking import RankingIndex
from billing_analytics.aggregation.records import (
    ZERO,
    CatalogRecord,
    TransactionRecord,
    parse_snapshot,
)
from billing_analytics.aggregation.state import AggregateState, InventoryValuation, MetricsSnapshot
from billing_analytics.aggregation.time_series import TimeSeriesBucketer
from billing_analytics.aggregation.valuation import ValuationCalculator
from billing_analytics.config import get_settings
from billing_analytics.config.settings import AnalyticsSettings
from billing_analytics.exceptions import FeedUnavailable, QueryFailure
from billing_analytics.ingestion.change_feed import ChangeFeed, FeedHandle, SnapshotEvent
from billing_analytics.quality import AnomalyLog, AnomalyType, RecordAnomaly

if TYPE_CHECKING:
    from billing_analytics.database.queries import PointQueryClient

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

SNAPSHOTS_PROCESSED = Counter(
    "billing_snapshots_processed_total",
    "Total number of collection snapshots received",
    ["collection", "status"],
)

RECOMPUTE_TIME = Histogram(
    "billing_recompute_seconds",
    "Time spent re-deriving metrics from a snapshot",
)

FEED_STALE = Gauge(
    "billing_feed_stale",
    "1 when published metrics reflect a lost feed",
)

POINT_QUERIES = Counter(
    "billing_point_queries_total",
    "One-shot refreshes through the point-query collaborator",
    ["status"],
)


SnapshotCallback = Callable[[MetricsSnapshot], None]


@dataclass
class EngineSubscription:
    """Feed handles owned by one ``subscribe`` call"""
    collections: Tuple[str, ...]
    handles: List[FeedHandle] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return bool(self.handles)


class AggregationEngine:
    """
    Derives sales analytics from bills and products snapshots.

    Recomputation is a full, in-memory rescan of the latest snapshot of each
    collection, so the same input always yields an equal MetricsSnapshot.
    Recompute-then-publish runs under a lock; readers only ever see a fully
    built snapshot.

    Example:
        engine = AggregationEngine(feed)
        engine.subscribe()
        stop = engine.on_snapshot_change(render)
        engine.get_snapshot().total_sales
    """

    def __init__(
        self,
        feed: ChangeFeed,
        query_client: Optional["PointQueryClient"] = None,
        config: Optional[AnalyticsSettings] = None,
        transactions_collection: Optional[str] = None,
        catalog_collection: Optional[str] = None,
    ):
        settings = get_settings()
        self.config = config or settings.analytics
        self.transactions_collection = transactions_collection or settings.feed.transactions_collection
        self.catalog_collection = catalog_collection or settings.feed.catalog_collection

        self._feed = feed
        self._query_client = query_client

        self._bucketer = TimeSeriesBucketer(window_days=self.config.sales_window_days)
        self._ranking = RankingIndex(top_k=self.config.top_products_limit)
        self._low_stock = LowStockIndex(threshold=self.config.low_stock_threshold)
        self._valuation = ValuationCalculator(collection=self.catalog_collection)

        self._lock = threading.Lock()
        self._subscription: Optional[EngineSubscription] = None
        self._listeners: List[SnapshotCallback] = []
        self._listeners_lock = threading.Lock()

        # Latest delivered snapshot per collection
        self._transactions: Tuple[TransactionRecord, ...] = ()
        self._catalog: Tuple[CatalogRecord, ...] = ()
        self._valuation_result = InventoryValuation(total_value=ZERO)
        self._sequences: Dict[str, int] = {}
        self._lost_collections: Set[str] = set()
        self._transaction_anomalies: Tuple[RecordAnomaly, ...] = ()
        self._catalog_anomalies: Tuple[RecordAnomaly, ...] = ()

        self._state: Optional[AggregateState] = None
        self._snapshot = MetricsSnapshot.from_state(self._empty_state(stale=True))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _empty_state(self, stale: bool = False) -> AggregateState:
        return AggregateState.empty(self.config.low_stock_threshold, stale=stale)

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def subscribe(self, collections: Optional[Iterable[str]] = None) -> EngineSubscription:
        """
        Register with the change feed for every tracked collection.

        Args:
            collections: Collections to track, defaults to bills and products

        Returns:
            EngineSubscription holding the feed handles

        Raises:
            FeedUnavailable: If any subscription cannot be established
        """
        if self._subscription is not None:
            return self._subscription

        tracked = tuple(collections or (self.transactions_collection, self.catalog_collection))
        unknown = set(tracked) - {self.transactions_collection, self.catalog_collection}
        if unknown:
            raise ValueError(f"Untracked collections: {sorted(unknown)}")

        subscription = EngineSubscription(collections=tracked)
        # the first snapshot can arrive synchronously from within feed.subscribe
        with self._lock:
            self._state = self._empty_state()
            self._lost_collections = set()
            self._snapshot = MetricsSnapshot.from_state(self._state)
        self._subscription = subscription

        try:
            for collection in tracked:
                handle = self._feed.subscribe(
                    collection,
                    partial(self._on_snapshot_event, subscription),
                    partial(self._on_feed_error, subscription),
                )
                subscription.handles.append(handle)
        except FeedUnavailable as e:
            logger.error("Initial feed subscription failed", collection=e.collection, error=e.message)
            self._release(subscription)
            raise

        FEED_STALE.set(0)
        logger.info("Aggregation engine subscribed", collections=list(tracked))
        return subscription

    def _release(self, subscription: EngineSubscription) -> None:
        handles, subscription.handles = subscription.handles, []
        for handle in handles:
            self._feed.unsubscribe(handle)

        with self._lock:
            if self._subscription is subscription:
                self._subscription = None
                self._state = None
                self._transactions = ()
                self._catalog = ()
                self._valuation_result = InventoryValuation(total_value=ZERO)
                self._sequences = {}
                self._lost_collections = set()
                self._transaction_anomalies = ()
                self._catalog_anomalies = ()
                self._snapshot = MetricsSnapshot.from_state(self._empty_state(stale=True))

    def unsubscribe(self) -> None:
        """Release all feed handles and discard the derived state. Reentrant."""
        subscription = self._subscription
        if subscription is None:
            return
        self._release(subscription)
        logger.info("Aggregation engine unsubscribed")

    # -------------------------------------------------------------------------
    # Recompute
    # -------------------------------------------------------------------------

    def _derive(self) -> AggregateState:
        transactions = self._transactions
        tally = self._ranking.tally(transactions)

        return AggregateState(
            total_sales=sum((bill.total for bill in transactions), ZERO),
            bill_count=len(transactions),
            daily_buckets=self._bucketer.bucket(transactions),
            product_tally=tally,
            top_products=self._ranking.top(tally),
            low_stock=self._low_stock.partition(self._catalog),
            inventory_value=self._valuation_result.total_value,
            stale=bool(self._lost_collections),
        )

    def _on_snapshot_event(self, subscription: EngineSubscription, event: SnapshotEvent) -> None:
        with self._lock:
            if self._subscription is not subscription:
                return

            last = self._sequences.get(event.collection)
            if last is not None and event.sequence <= last:
                # same or older snapshot: the newer derived result already stands
                SNAPSHOTS_PROCESSED.labels(collection=event.collection, status="superseded").inc()
                logger.debug(
                    "Ignoring superseded snapshot",
                    collection=event.collection,
                    sequence=event.sequence,
                    latest=last,
                )
                return

            start_time = time.perf_counter()
            anomalies = AnomalyLog()
            if event.collection == self.transactions_collection:
                self._transactions = tuple(parse_snapshot(
                    TransactionRecord, event.collection, event.records, anomalies,
                ))
                self._transaction_anomalies = anomalies.anomalies
            elif event.collection == self.catalog_collection:
                self._catalog = tuple(parse_snapshot(
                    CatalogRecord, event.collection, event.records, anomalies,
                ))
                self._valuation_result = self._valuation.calculate(self._catalog, anomalies)
                self._catalog_anomalies = anomalies.anomalies
            else:
                logger.warning("Snapshot for untracked collection", collection=event.collection)
                return
            self._sequences[event.collection] = event.sequence
            self._lost_collections.discard(event.collection)

            self._state = self._derive()
            snapshot = MetricsSnapshot.from_state(self._state)
            self._snapshot = snapshot

            duration = time.perf_counter() - start_time
            RECOMPUTE_TIME.observe(duration)
            SNAPSHOTS_PROCESSED.labels(collection=event.collection, status="applied").inc()
            FEED_STALE.set(1 if snapshot.stale else 0)

        logger.info(
            "Metrics recomputed",
            collection=event.collection,
            sequence=event.sequence,
            records=len(event.records),
            skipped=anomalies.count(AnomalyType.MALFORMED_RECORD),
            total_sales=str(snapshot.total_sales),
            bill_count=snapshot.bill_count,
            duration_ms=round(duration * 1000, 2),
        )
        self._notify(snapshot)

    def _on_feed_error(self, subscription: EngineSubscription, error: FeedUnavailable) -> None:
        with self._lock:
            if self._subscription is not subscription or self._state is None:
                return
            lost = {error.collection} if error.collection else set(subscription.collections)
            newly_lost = lost - self._lost_collections
            if not newly_lost:
                return
            # stays stale until every lost collection delivers a new snapshot
            self._lost_collections |= newly_lost
            lost_collections = sorted(self._lost_collections)

            snapshot: Optional[MetricsSnapshot] = None
            if not self._state.stale:
                self._state = self._state.mark_stale()
                snapshot = MetricsSnapshot.from_state(self._state)
                self._snapshot = snapshot

        FEED_STALE.set(1)
        logger.warning(
            "Change feed lost, serving stale metrics",
            collection=error.collection,
            lost_collections=lost_collections,
            reason=error.message,
        )
        if snapshot is not None:
            self._notify(snapshot)

    # -------------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------------

    def get_snapshot(self) -> MetricsSnapshot:
        """Latest published metrics. Never performs I/O."""
        return self._snapshot

    @property
    def state(self) -> Optional[AggregateState]:
        """Full derived state, None while unsubscribed"""
        return self._state

    @property
    def lost_collections(self) -> FrozenSet[str]:
        """Collections whose feed was lost and has not delivered since"""
        return frozenset(self._lost_collections)

    @property
    def last_anomalies(self) -> Tuple[RecordAnomaly, ...]:
        """Anomalies met while aggregating the current bills and products"""
        return self._transaction_anomalies + self._catalog_anomalies

    def on_snapshot_change(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register for every newly published snapshot.

        Returns:
            Callable removing the registration; safe to call from the callback
        """
        with self._listeners_lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, snapshot: MetricsSnapshot) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)

        for callback in listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("Snapshot listener failed", error=str(e), error_type=type(e).__name__)

    # -------------------------------------------------------------------------
    # One-shot refresh
    # -------------------------------------------------------------------------

    async def refresh(self) -> MetricsSnapshot:
        """
        Reload totals, rankings, low stock and valuation through the point-query
        collaborator and publish the merged snapshot.

        Raises:
            FeedUnavailable: If the engine is unsubscribed or its feed is lost
            QueryFailure: If a point query fails; the cached snapshot stays valid
        """
        subscription = self._subscription
        state = self._state
        if subscription is None or state is None:
            raise FeedUnavailable("Aggregation engine is not subscribed")
        if state.stale:
            raise FeedUnavailable("Change feed is unavailable; metrics are stale")
        if self._query_client is None:
            POINT_QUERIES.labels(status="unconfigured").inc()
            raise QueryFailure("No point-query client configured")

        client = self._query_client
        try:
            top_products, low_stock, valuation, total_sales = await asyncio.gather(
                client.get_top_selling_products(self.config.top_products_limit),
                client.get_low_stock_products(self.config.low_stock_threshold),
                client.get_inventory_value(),
                client.get_total_sales_amount(),
            )
        except QueryFailure:
            POINT_QUERIES.labels(status="error").inc()
            raise
        except Exception as e:
            POINT_QUERIES.labels(status="error").inc()
            logger.error("Point-query refresh failed", error=str(e), error_type=type(e).__name__)
            raise QueryFailure(f"Refresh failed: {e}") from e

        with self._lock:
            if self._subscription is not subscription or self._state is None:
                raise FeedUnavailable("Aggregation engine unsubscribed during refresh")
            if self._state.stale:
                raise FeedUnavailable("Change feed is unavailable; metrics are stale")
            self._state = replace(
                self._state,
                total_sales=total_sales,
                top_products=tuple(top_products),
                low_stock=self._low_stock.partition(low_stock),
                inventory_value=valuation.total_value,
            )
            snapshot = MetricsSnapshot.from_state(self._state)
            self._snapshot = snapshot

        POINT_QUERIES.labels(status="success").inc()
        logger.info("Metrics refreshed from point queries", total_sales=str(snapshot.total_sales))
        self._notify(snapshot)
        return snapshot
