"""
Unit Tests - Low-Stock Index
"""
import pytest

from billing_analytics.aggregation import CatalogRecord, LowStockIndex


def make_products(*quantities):
    return [
        CatalogRecord(id=f"p{i}", name=f"Product {i}", price=1, quantity=qty)
        for i, qty in enumerate(quantities)
    ]


class TestLowStockIndex:
    """Tests for LowStockIndex"""

    def test_boundaries(self):
        """Test 0 is critical, 20 is warning and 21 is neither"""
        report = LowStockIndex(threshold=20).partition(make_products(0, 20, 21))

        assert [p.quantity for p in report.critical] == [0]
        assert [p.quantity for p in report.warning] == [20]
        assert report.critical_count == 1
        assert report.warning_count == 1

    def test_products_lists_critical_first(self):
        """Test display order is critical then warning, each by quantity"""
        report = LowStockIndex(threshold=20).partition(make_products(7, 0, 3, 50, 0))

        assert [p.quantity for p in report.products] == [0, 0, 3, 7]
        assert [p.id for p in report.critical] == ["p1", "p4"]

    def test_custom_threshold(self):
        """Test the threshold is inclusive"""
        report = LowStockIndex(threshold=5).partition(make_products(5, 6))

        assert [p.quantity for p in report.warning] == [5]

    def test_empty_catalog(self):
        """Test an empty catalog yields empty partitions"""
        report = LowStockIndex().partition([])

        assert report.products == ()
        assert report.threshold == 20

    def test_negative_threshold(self):
        """Test a negative threshold is rejected"""
        with pytest.raises(ValueError):
            LowStockIndex(threshold=-1)
