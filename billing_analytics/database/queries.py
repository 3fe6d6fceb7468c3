"""
Point Queries

One-shot batch queries against the billing store, used to refresh metrics
outside the live change feed.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billing_analytics.aggregation.records import CatalogRecord, to_money
from billing_analytics.aggregation.state import InventoryValuation, ProductSales
from billing_analytics.database.models import Bill, BillItem, Product
from billing_analytics.exceptions import QueryFailure

logger = structlog.get_logger(__name__)


class PointQueryClient(ABC):
    """Abstract base class for point-query collaborators"""

    @abstractmethod
    async def get_top_selling_products(self, limit: int) -> List[ProductSales]:
        """Products ordered by units sold, revenue, then id"""
        pass

    @abstractmethod
    async def get_low_stock_products(self, threshold: int) -> List[CatalogRecord]:
        """Products with ``quantity <= threshold``"""
        pass

    @abstractmethod
    async def get_inventory_value(self) -> InventoryValuation:
        pass

    @abstractmethod
    async def get_total_sales_amount(self) -> Decimal:
        pass


class SqlPointQueryClient(PointQueryClient):
    """
    Point queries over the billing store's SQL tables.

    Every query opens its own short-lived session; SQL failures surface as
    QueryFailure.

    Example:
        client = SqlPointQueryClient(get_session_factory())
        top = await client.get_top_selling_products(5)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _execute(self, query_name: str, statement):
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return result.all()
        except SQLAlchemyError as e:
            logger.error("Point query failed", query=query_name, error=str(e))
            raise QueryFailure(f"{query_name} failed: {e}", query=query_name) from e

    async def get_top_selling_products(self, limit: int) -> List[ProductSales]:
        quantity_sold = func.sum(BillItem.quantity).label("quantity_sold")
        total_revenue = func.sum(BillItem.line_revenue).label("total_revenue")
        statement = (
            select(
                BillItem.product_id,
                func.max(BillItem.product_name).label("product_name"),
                quantity_sold,
                total_revenue,
                func.count(func.distinct(BillItem.bill_id)).label("bill_count"),
            )
            .group_by(BillItem.product_id)
            .order_by(quantity_sold.desc(), total_revenue.desc(), BillItem.product_id.asc())
            .limit(limit)
        )
        rows = await self._execute("get_top_selling_products", statement)

        return [
            ProductSales(
                product_id=row.product_id,
                product_name=row.product_name or "",
                quantity_sold=int(row.quantity_sold),
                total_revenue=to_money(row.total_revenue),
                bill_count=int(row.bill_count),
            )
            for row in rows
        ]

    async def get_low_stock_products(self, threshold: int) -> List[CatalogRecord]:
        statement = (
            select(Product.id, Product.name, Product.category, Product.price, Product.quantity)
            .where(Product.quantity >= 0, Product.quantity <= threshold)
            .order_by(Product.quantity.asc(), Product.id.asc())
        )
        rows = await self._execute("get_low_stock_products", statement)

        return [
            CatalogRecord(
                id=row.id,
                name=row.name,
                category=row.category,
                price=row.price,
                quantity=row.quantity,
            )
            for row in rows
        ]

    async def get_inventory_value(self) -> InventoryValuation:
        totals = await self._execute(
            "get_inventory_value",
            select(
                func.coalesce(func.sum(func.coalesce(Product.price, 0) * Product.quantity), 0).label("total_value"),
                func.coalesce(func.sum(Product.quantity), 0).label("total_units"),
            ),
        )
        unpriced = await self._execute(
            "get_inventory_value",
            select(Product.id).where(Product.price.is_(None)).order_by(Product.id),
        )

        row = totals[0]
        return InventoryValuation(
            total_value=to_money(row.total_value),
            total_units=int(row.total_units),
            unpriced_product_ids=tuple(r.id for r in unpriced),
        )

    async def get_total_sales_amount(self) -> Decimal:
        rows = await self._execute(
            "get_total_sales_amount",
            select(func.coalesce(func.sum(Bill.total), 0).label("total")),
        )
        return to_money(rows[0].total)
