"""
Unit Tests - SQL Point Queries
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from billing_analytics.database.queries import SqlPointQueryClient
from billing_analytics.exceptions import QueryFailure


class TestSqlPointQueryClient:
    """Tests for SqlPointQueryClient against sqlite"""

    async def test_top_selling_products(self, seeded_session_factory):
        """Test ranking order and per-product tallies"""
        client = SqlPointQueryClient(seeded_session_factory)

        top = await client.get_top_selling_products(2)

        assert [p.product_id for p in top] == ["p2", "p1"]
        assert top[0].quantity_sold == 5
        assert top[0].total_revenue == Decimal("6.25")
        assert top[0].bill_count == 2
        assert top[1].product_name == "Rice 5kg"

    async def test_low_stock_products(self, seeded_session_factory):
        """Test the threshold is inclusive and results are ordered by quantity"""
        client = SqlPointQueryClient(seeded_session_factory)

        products = await client.get_low_stock_products(20)

        assert [p.id for p in products] == ["p1", "p4", "p2"]
        assert products[1].price is None

    async def test_inventory_value(self, seeded_session_factory):
        """Test unpriced products count as zero"""
        client = SqlPointQueryClient(seeded_session_factory)

        valuation = await client.get_inventory_value()

        assert valuation.total_value == Decimal("109.00")
        assert valuation.total_units == 46
        assert valuation.unpriced_product_ids == ("p4",)

    async def test_total_sales_amount(self, seeded_session_factory):
        """Test the sum of bill totals"""
        client = SqlPointQueryClient(seeded_session_factory)

        assert await client.get_total_sales_amount() == Decimal("55.75")

    async def test_empty_store(self, session_factory):
        """Test empty tables give zero results"""
        client = SqlPointQueryClient(session_factory)

        assert await client.get_top_selling_products(5) == []
        assert await client.get_total_sales_amount() == Decimal("0.00")
        assert (await client.get_inventory_value()).total_value == Decimal("0.00")

    async def test_sql_error_becomes_query_failure(self):
        """Test SQLAlchemy errors surface as QueryFailure"""

        class BrokenSession:
            async def __aenter__(self):
                raise OperationalError("SELECT 1", {}, Exception("database is locked"))

            async def __aexit__(self, *exc):
                return False

        client = SqlPointQueryClient(lambda: BrokenSession())

        with pytest.raises(QueryFailure) as exc_info:
            await client.get_total_sales_amount()

        assert exc_info.value.query == "get_total_sales_amount"
