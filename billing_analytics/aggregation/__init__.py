"""
Aggregation Module
"""
from .records import CatalogRecord, LineItem, TransactionRecord, parse_record, parse_snapshot, to_money
from .state import (
    AggregateState,
    DailyBucket,
    InventoryValuation,
    LowStockReport,
    MetricsSnapshot,
    ProductSales,
)
from .low_stock import LowStockIndex
from .ranking import RankingIndex
from .time_series import TimeSeriesBucketer
from .valuation import ValuationCalculator
from .engine import AggregationEngine, EngineSubscription

__all__ = [
    "AggregateState",
    "AggregationEngine",
    "CatalogRecord",
    "DailyBucket",
    "EngineSubscription",
    "InventoryValuation",
    "LineItem",
    "LowStockIndex",
    "LowStockReport",
    "MetricsSnapshot",
    "ProductSales",
    "RankingIndex",
    "TimeSeriesBucketer",
    "TransactionRecord",
    "ValuationCalculator",
    "parse_record",
    "parse_snapshot",
    "to_money",
]
