"""
Inventory Valuation

Monetary value of the catalog: sum of ``price x quantity`` with a missing
price counted as zero.
"""

from decimal import Decimal
from typing import Iterable, List, Optional

import structlog

from billing_analytics.aggregation.records import ZERO, CatalogRecord
from billing_analytics.aggregation.state import InventoryValuation
from billing_analytics.quality import AnomalyLog, AnomalyType

logger = structlog.get_logger(__name__)


class ValuationCalculator:
    """
    Values a catalog snapshot.

    A product without a price contributes nothing to the total. The coercion is
    recorded in the anomaly log when one is given, so it stays visible without
    interrupting the aggregation pass.

    Example:
        calculator = ValuationCalculator()
        valuation = calculator.calculate(catalog)
        valuation.total_value  # Decimal("1234.50")
    """

    def __init__(self, collection: str = "products"):
        self.collection = collection

    def calculate(
        self,
        catalog: Iterable[CatalogRecord],
        anomalies: Optional[AnomalyLog] = None,
    ) -> InventoryValuation:
        total_value: Decimal = ZERO
        total_units = 0
        unpriced: List[str] = []

        for product in catalog:
            total_units += product.quantity
            if product.price is None:
                unpriced.append(product.id)
                if anomalies is not None:
                    anomalies.record(
                        self.collection,
                        product.id,
                        AnomalyType.MISSING_PRICE,
                        "Missing price counted as 0 in inventory value",
                        quantity=product.quantity,
                    )
                continue
            total_value += product.price * product.quantity

        logger.debug(
            "Inventory valued",
            total_value=str(total_value),
            total_units=total_units,
            unpriced=len(unpriced),
        )
        return InventoryValuation(
            total_value=total_value,
            total_units=total_units,
            unpriced_product_ids=tuple(unpriced),
        )
