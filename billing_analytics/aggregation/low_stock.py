"""
Low-Stock Index

Partitions a catalog snapshot into out-of-stock (critical) and low-stock
(warning) entries.
"""

from typing import Iterable, List

from billing_analytics.aggregation.records import CatalogRecord
from billing_analytics.aggregation.state import LowStockReport

DEFAULT_LOW_STOCK_THRESHOLD = 20


def _display_order(product: CatalogRecord):
    return (product.quantity, product.id)


class LowStockIndex:
    """
    Classifies products by stock level.

    - critical: ``quantity == 0``
    - warning: ``0 < quantity <= threshold`` (inclusive)
    - anything above the threshold is in neither partition
    """

    def __init__(self, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD):
        if threshold < 0:
            raise ValueError("threshold must not be negative")
        self.threshold = threshold

    def partition(self, catalog: Iterable[CatalogRecord]) -> LowStockReport:
        critical: List[CatalogRecord] = []
        warning: List[CatalogRecord] = []

        for product in catalog:
            if product.quantity == 0:
                critical.append(product)
            elif 0 < product.quantity <= self.threshold:
                warning.append(product)

        return LowStockReport(
            threshold=self.threshold,
            critical=tuple(sorted(critical, key=_display_order)),
            warning=tuple(sorted(warning, key=_display_order)),
        )
