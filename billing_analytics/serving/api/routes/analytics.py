"""
Analytics API Endpoints

Read access to the aggregation engine's published metrics for dashboards.
Every read is served from the latest in-memory snapshot; only ``/refresh``
touches the billing store.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
import structlog

from billing_analytics.aggregation import AggregationEngine, MetricsSnapshot
from billing_analytics.exceptions import FeedUnavailable, QueryFailure
from billing_analytics.serving.api.dependencies import get_engine

router = APIRouter()
logger = structlog.get_logger(__name__)


class DailySalesData(BaseModel):
    """Daily sales data point"""
    date: date
    revenue: Decimal


class SalesTrend(BaseModel):
    """Sales trend response"""
    data: List[DailySalesData]
    period_start: Optional[date]
    period_end: Optional[date]
    total_revenue: Decimal
    stale: bool


class TopProduct(BaseModel):
    """Top-selling product entry"""
    rank: int
    product_id: str
    product_name: str
    quantity_sold: int
    total_revenue: Decimal
    bill_count: int


class TopProductsResponse(BaseModel):
    products: List[TopProduct]
    stale: bool


class StockItem(BaseModel):
    """Catalog entry at or below the stock threshold"""
    id: str
    name: str
    category: str
    quantity: int
    price: Optional[Decimal]
    status: str


class LowStockResponse(BaseModel):
    threshold: int
    critical_count: int
    warning_count: int
    products: List[StockItem]
    stale: bool


class AnalyticsSnapshot(BaseModel):
    """Full dashboard payload"""
    total_sales: Decimal
    bill_count: int
    average_sale_per_bill: Decimal
    inventory_value: Decimal
    critical_count: int
    warning_count: int
    top_products: List[TopProduct]
    sales_trend: List[DailySalesData]
    stale: bool


def _top_products(snapshot: MetricsSnapshot, limit: Optional[int] = None) -> List[TopProduct]:
    entries = snapshot.top_products if limit is None else snapshot.top_products[:limit]
    return [
        TopProduct(
            rank=rank,
            product_id=entry.product_id,
            product_name=entry.product_name,
            quantity_sold=entry.quantity_sold,
            total_revenue=entry.total_revenue,
            bill_count=entry.bill_count,
        )
        for rank, entry in enumerate(entries, start=1)
    ]


def _sales_trend(snapshot: MetricsSnapshot) -> List[DailySalesData]:
    return [
        DailySalesData(date=date.fromisoformat(bucket.date_key), revenue=bucket.total)
        for bucket in snapshot.sales_time_series
    ]


def _to_response(snapshot: MetricsSnapshot) -> AnalyticsSnapshot:
    return AnalyticsSnapshot(
        total_sales=snapshot.total_sales,
        bill_count=snapshot.bill_count,
        average_sale_per_bill=snapshot.average_sale_per_bill,
        inventory_value=snapshot.inventory_value,
        critical_count=snapshot.critical_count,
        warning_count=snapshot.warning_count,
        top_products=_top_products(snapshot),
        sales_trend=_sales_trend(snapshot),
        stale=snapshot.stale,
    )


@router.get("/snapshot", response_model=AnalyticsSnapshot)
async def get_analytics_snapshot(
    engine: AggregationEngine = Depends(get_engine),
) -> AnalyticsSnapshot:
    """Latest published metrics."""
    return _to_response(engine.get_snapshot())


@router.get("/top-products", response_model=TopProductsResponse)
async def get_top_products(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    engine: AggregationEngine = Depends(get_engine),
) -> TopProductsResponse:
    """
    Top-selling products by units sold, then revenue, then product id.

    ``limit`` can only narrow the engine's configured ranking size.
    """
    snapshot = engine.get_snapshot()
    return TopProductsResponse(products=_top_products(snapshot, limit), stale=snapshot.stale)


@router.get("/low-stock", response_model=LowStockResponse)
async def get_low_stock(engine: AggregationEngine = Depends(get_engine)) -> LowStockResponse:
    """Out-of-stock products first, then products at or below the threshold."""
    snapshot = engine.get_snapshot()
    return LowStockResponse(
        threshold=snapshot.low_stock_threshold,
        critical_count=snapshot.critical_count,
        warning_count=snapshot.warning_count,
        products=[
            StockItem(
                id=product.id,
                name=product.name,
                category=product.category,
                quantity=product.quantity,
                price=product.price,
                status="critical" if product.quantity == 0 else "warning",
            )
            for product in snapshot.low_stock_products
        ],
        stale=snapshot.stale,
    )


@router.get("/sales/trend", response_model=SalesTrend)
async def get_sales_trend(engine: AggregationEngine = Depends(get_engine)) -> SalesTrend:
    """Daily sales over the most recent days that have bills."""
    snapshot = engine.get_snapshot()
    data = _sales_trend(snapshot)
    return SalesTrend(
        data=data,
        period_start=data[0].date if data else None,
        period_end=data[-1].date if data else None,
        total_revenue=sum((point.revenue for point in data), Decimal("0.00")),
        stale=snapshot.stale,
    )


@router.post("/refresh", response_model=AnalyticsSnapshot)
async def refresh_analytics(engine: AggregationEngine = Depends(get_engine)) -> AnalyticsSnapshot:
    """
    Reload metrics through the point-query client.

    Returns 503 while the change feed is unavailable and 502 when the billing
    store query fails; the cached snapshot stays served in both cases.
    """
    try:
        snapshot = await engine.refresh()
    except FeedUnavailable as e:
        logger.warning("Refresh rejected", reason=e.message)
        raise HTTPException(status_code=503, detail=e.message)
    except QueryFailure as e:
        logger.error("Refresh failed", query=e.query, error=e.message)
        raise HTTPException(status_code=502, detail=e.message)

    return _to_response(snapshot)
