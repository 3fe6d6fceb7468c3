"""
Ranking Index

Per-product sales tallies and the top-selling ranking derived from a bills
snapshot.
"""

import heapq
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple

from billing_analytics.aggregation.records import ZERO, TransactionRecord
from billing_analytics.aggregation.state import ProductSales

DEFAULT_TOP_K = 5


@dataclass
class _Tally:
    product_name: str = ""
    quantity_sold: int = 0
    total_revenue: Decimal = ZERO
    bill_count: int = 0

    def freeze(self, product_id: str) -> ProductSales:
        return ProductSales(
            product_id=product_id,
            product_name=self.product_name,
            quantity_sold=self.quantity_sold,
            total_revenue=self.total_revenue,
            bill_count=self.bill_count,
        )


def ranking_key(entry: ProductSales) -> Tuple[int, Decimal, str]:
    """Quantity sold desc, then revenue desc, then product id asc"""
    return (-entry.quantity_sold, -entry.total_revenue, entry.product_id)


class RankingIndex:
    """
    Builds product tallies and selects the top K under a total order.

    Product labels come from the name captured on the bill, so renaming or
    deleting a catalog entry never rewrites historical rankings. The first
    non-empty name met in snapshot order wins.
    """

    def __init__(self, top_k: int = DEFAULT_TOP_K):
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        self.top_k = top_k

    def tally(self, transactions: Iterable[TransactionRecord]) -> Mapping[str, ProductSales]:
        tallies: Dict[str, _Tally] = {}

        for bill in transactions:
            counted: Set[str] = set()
            for item in bill.items:
                entry = tallies.setdefault(item.product_id, _Tally())
                entry.quantity_sold += item.quantity
                entry.total_revenue += item.line_revenue
                if not entry.product_name and item.product_name:
                    entry.product_name = item.product_name
                # a product repeated on one bill still counts that bill once
                if item.product_id not in counted:
                    counted.add(item.product_id)
                    entry.bill_count += 1

        return MappingProxyType({
            product_id: tallies[product_id].freeze(product_id)
            for product_id in sorted(tallies)
        })

    def top(
        self,
        tally: Mapping[str, ProductSales],
        limit: Optional[int] = None,
    ) -> Tuple[ProductSales, ...]:
        k = self.top_k if limit is None else limit
        return tuple(heapq.nsmallest(k, tally.values(), key=ranking_key))

    def rank(self, transactions: Iterable[TransactionRecord]) -> Tuple[ProductSales, ...]:
        return self.top(self.tally(transactions))
