"""
Derived Aggregate State

Immutable value types produced by the aggregation pass. An ``AggregateState``
is replaced wholesale on every snapshot; ``MetricsSnapshot`` is the read-only
projection handed to consumers.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from billing_analytics.aggregation.records import ZERO, CatalogRecord, to_money


@dataclass(frozen=True)
class DailyBucket:
    """Sales total of one calendar day"""
    date_key: str
    total: Decimal


@dataclass(frozen=True)
class ProductSales:
    """Per-product tally used both for the full tally and the ranking"""
    product_id: str
    product_name: str
    quantity_sold: int
    total_revenue: Decimal
    bill_count: int


@dataclass(frozen=True)
class LowStockReport:
    """Catalog entries at or below the stock threshold"""
    threshold: int
    critical: Tuple[CatalogRecord, ...] = ()
    warning: Tuple[CatalogRecord, ...] = ()

    @property
    def critical_count(self) -> int:
        return len(self.critical)

    @property
    def warning_count(self) -> int:
        return len(self.warning)

    @property
    def products(self) -> Tuple[CatalogRecord, ...]:
        """Out-of-stock entries first, then low-stock ones"""
        return self.critical + self.warning


@dataclass(frozen=True)
class InventoryValuation:
    """Monetary value of the catalog"""
    total_value: Decimal
    total_units: int = 0
    unpriced_product_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AggregateState:
    """Everything the engine derives from the latest snapshots"""
    total_sales: Decimal
    bill_count: int
    daily_buckets: Tuple[DailyBucket, ...]
    product_tally: Mapping[str, ProductSales]
    top_products: Tuple[ProductSales, ...]
    low_stock: LowStockReport
    inventory_value: Decimal
    stale: bool = False

    @classmethod
    def empty(cls, low_stock_threshold: int, stale: bool = False) -> "AggregateState":
        return cls(
            total_sales=ZERO,
            bill_count=0,
            daily_buckets=(),
            product_tally=MappingProxyType({}),
            top_products=(),
            low_stock=LowStockReport(threshold=low_stock_threshold),
            inventory_value=ZERO,
            stale=stale,
        )

    def mark_stale(self) -> "AggregateState":
        return replace(self, stale=True)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Read-only metrics published to consumers"""
    total_sales: Decimal
    bill_count: int
    top_products: Tuple[ProductSales, ...]
    low_stock_products: Tuple[CatalogRecord, ...]
    inventory_value: Decimal
    sales_time_series: Tuple[DailyBucket, ...]
    stale: bool
    critical_count: int = 0
    warning_count: int = 0
    low_stock_threshold: int = 20

    @classmethod
    def from_state(cls, state: AggregateState) -> "MetricsSnapshot":
        return cls(
            total_sales=state.total_sales,
            bill_count=state.bill_count,
            top_products=state.top_products,
            low_stock_products=state.low_stock.products,
            inventory_value=state.inventory_value,
            sales_time_series=state.daily_buckets,
            stale=state.stale,
            critical_count=state.low_stock.critical_count,
            warning_count=state.low_stock.warning_count,
            low_stock_threshold=state.low_stock.threshold,
        )

    @property
    def average_sale_per_bill(self) -> Decimal:
        if self.bill_count == 0:
            return ZERO
        return to_money(self.total_sales / self.bill_count)

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation with money rendered as fixed-point strings"""
        return {
            "total_sales": str(self.total_sales),
            "bill_count": self.bill_count,
            "average_sale_per_bill": str(self.average_sale_per_bill),
            "inventory_value": str(self.inventory_value),
            "stale": self.stale,
            "sales_time_series": [
                {"date_key": b.date_key, "total": str(b.total)} for b in self.sales_time_series
            ],
            "top_products": [
                {
                    "product_id": p.product_id,
                    "product_name": p.product_name,
                    "quantity_sold": p.quantity_sold,
                    "total_revenue": str(p.total_revenue),
                    "bill_count": p.bill_count,
                }
                for p in self.top_products
            ],
            "low_stock": {
                "threshold": self.low_stock_threshold,
                "critical_count": self.critical_count,
                "warning_count": self.warning_count,
                "products": [
                    {
                        "id": p.id,
                        "name": p.name,
                        "category": p.category,
                        "quantity": p.quantity,
                        "price": None if p.price is None else str(p.price),
                    }
                    for p in self.low_stock_products
                ],
            },
        }
