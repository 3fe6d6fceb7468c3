"""
Unit Tests - Record Anomaly Ledger
"""
from billing_analytics.quality import AnomalyLog, AnomalySeverity, AnomalyType
from billing_analytics.quality.anomalies import RECORD_ANOMALIES


class TestAnomalyLog:
    """Tests for AnomalyLog"""

    def test_record_keeps_details(self):
        """Test a recorded anomaly carries its context"""
        anomalies = AnomalyLog()

        anomaly = anomalies.record("products", "p4", AnomalyType.MISSING_PRICE, "price is null", quantity=5)

        assert anomaly.severity == AnomalySeverity.LOW
        assert anomaly.details == {"quantity": 5}
        assert len(anomalies) == 1

    def test_count_by_type(self):
        """Test counts can be filtered by anomaly type"""
        anomalies = AnomalyLog()
        anomalies.record("bills", "b1", AnomalyType.MALFORMED_RECORD, "missing total")
        anomalies.record("bills", "b2", AnomalyType.MALFORMED_RECORD, "missing date")
        anomalies.record("products", "p1", AnomalyType.MISSING_PRICE, "price is null")

        assert anomalies.count() == 3
        assert anomalies.count(AnomalyType.MALFORMED_RECORD) == 2
        assert anomalies.anomalies[0].severity == AnomalySeverity.HIGH

    def test_record_increments_counter(self):
        """Test each anomaly is counted in Prometheus"""
        counter = RECORD_ANOMALIES.labels(collection="bills", anomaly_type="malformed_record")
        before = counter._value.get()

        AnomalyLog().record("bills", None, AnomalyType.MALFORMED_RECORD, "not a mapping")

        assert counter._value.get() == before + 1
