"""
Record Anomaly Ledger

Collects the data-quality anomalies met during one aggregation pass:
- Malformed records skipped from aggregation
- Catalog entries whose missing price was coerced to zero

Every anomaly is logged and counted as it is recorded; the pass itself is
never interrupted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog
from prometheus_client import Counter

logger = structlog.get_logger(__name__)


RECORD_ANOMALIES = Counter(
    "billing_record_anomalies_total",
    "Total number of record anomalies met while aggregating",
    ["collection", "anomaly_type"],
)


class AnomalyType(str, Enum):
    """Types of record anomalies"""
    MALFORMED_RECORD = "malformed_record"  # Skipped entirely
    MISSING_PRICE = "missing_price"  # Coerced to 0


class AnomalySeverity(str, Enum):
    """Severity levels for anomalies"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class RecordAnomaly:
    """Single anomalous record"""
    collection: str
    record_id: Optional[str]
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AnomalyLog:
    """
    Anomalies of a single recompute pass.

    Example:
        anomalies = AnomalyLog()
        anomalies.record("products", "p1", AnomalyType.MISSING_PRICE, "price is null")
        anomalies.count(AnomalyType.MISSING_PRICE)  # 1
    """

    _SEVERITIES = {
        AnomalyType.MALFORMED_RECORD: AnomalySeverity.HIGH,
        AnomalyType.MISSING_PRICE: AnomalySeverity.LOW,
    }

    def __init__(self):
        self._anomalies: List[RecordAnomaly] = []

    def record(
        self,
        collection: str,
        record_id: Optional[str],
        anomaly_type: AnomalyType,
        message: str,
        **details: Any,
    ) -> RecordAnomaly:
        """Log, count and keep an anomaly"""
        anomaly = RecordAnomaly(
            collection=collection,
            record_id=record_id,
            anomaly_type=anomaly_type,
            severity=self._SEVERITIES[anomaly_type],
            message=message,
            details=details,
        )
        self._anomalies.append(anomaly)

        RECORD_ANOMALIES.labels(collection=collection, anomaly_type=anomaly_type.value).inc()
        logger.warning(
            "Record anomaly",
            collection=collection,
            record_id=record_id,
            anomaly_type=anomaly_type.value,
            reason=message,
            **details,
        )
        return anomaly

    def count(self, anomaly_type: Optional[AnomalyType] = None) -> int:
        if anomaly_type is None:
            return len(self._anomalies)
        return sum(1 for a in self._anomalies if a.anomaly_type == anomaly_type)

    @property
    def anomalies(self) -> Tuple[RecordAnomaly, ...]:
        return tuple(self._anomalies)

    def __len__(self) -> int:
        return len(self._anomalies)
