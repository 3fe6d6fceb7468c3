"""
Data Quality Module
"""
from .anomalies import AnomalyLog, AnomalySeverity, AnomalyType, RecordAnomaly

__all__ = [
    "AnomalyLog",
    "AnomalySeverity",
    "AnomalyType",
    "RecordAnomaly",
]
