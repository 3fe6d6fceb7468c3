"""
Unit Tests - HTTP API
"""
import pytest
from fastapi.testclient import TestClient

from billing_analytics.config.settings import KafkaSettings
from billing_analytics.ingestion import KafkaChangeFeed
from billing_analytics.serving.api import create_api_app


@pytest.fixture
def client(engine, feed):
    app = create_api_app(engine, feed=feed)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def loaded(engine, feed, sample_bills, sample_products):
    feed.publish("products", sample_products)
    feed.publish("bills", sample_bills)
    return engine


class TestAnalyticsRoutes:
    """Tests for the analytics endpoints"""

    def test_snapshot(self, client, loaded):
        """Test the dashboard payload"""
        response = client.get("/api/v1/analytics/snapshot")

        assert response.status_code == 200
        data = response.json()
        assert data["bill_count"] == 3
        assert data["total_sales"] == "55.75"
        assert data["average_sale_per_bill"] == "18.58"
        assert data["critical_count"] == 1
        assert data["stale"] is False
        assert "X-Request-ID" in response.headers

    def test_top_products_limit(self, client, loaded):
        """Test limit narrows the ranking"""
        response = client.get("/api/v1/analytics/top-products", params={"limit": 2})

        assert response.status_code == 200
        products = response.json()["products"]
        assert [(p["rank"], p["product_id"]) for p in products] == [(1, "p2"), (2, "p1")]

    def test_top_products_rejects_bad_limit(self, client):
        """Test limit must be positive"""
        response = client.get("/api/v1/analytics/top-products", params={"limit": 0})

        assert response.status_code == 422

    def test_low_stock(self, client, loaded):
        """Test partitions are labelled"""
        data = client.get("/api/v1/analytics/low-stock").json()

        assert data["threshold"] == 20
        assert [(p["id"], p["status"]) for p in data["products"]] == [
            ("p1", "critical"),
            ("p4", "warning"),
            ("p2", "warning"),
        ]

    def test_sales_trend(self, client, loaded):
        """Test the daily series with its period bounds"""
        data = client.get("/api/v1/analytics/sales/trend").json()

        assert data["period_start"] == "2024-03-01"
        assert data["period_end"] == "2024-03-02"
        assert data["total_revenue"] == "55.75"

    def test_sales_trend_empty(self, client):
        """Test an empty series has no period"""
        data = client.get("/api/v1/analytics/sales/trend").json()

        assert data["data"] == []
        assert data["period_start"] is None

    def test_refresh_without_store(self, client, loaded):
        """Test refresh without a point-query client is a bad gateway"""
        response = client.post("/api/v1/analytics/refresh")

        assert response.status_code == 502

    def test_refresh_when_stale(self, client, loaded, feed):
        """Test refresh while the feed is lost is unavailable"""
        feed.disconnect()

        response = client.post("/api/v1/analytics/refresh")

        assert response.status_code == 503


class TestFeedRoutes:
    """Tests for the snapshot ingest endpoint"""

    def test_ingest_updates_snapshot(self, client, engine, sample_bills):
        """Test a posted bills snapshot is aggregated"""
        response = client.post("/api/v1/feed/bills/snapshot", json={"records": sample_bills})

        assert response.status_code == 202
        assert response.json() == {"collection": "bills", "sequence": 1, "records": 3}
        assert engine.get_snapshot().bill_count == 3
        assert client.get("/api/v1/analytics/snapshot").json()["total_sales"] == "55.75"

    def test_ingest_unknown_collection(self, client):
        """Test collections the engine does not track are not found"""
        response = client.post("/api/v1/feed/customers/snapshot", json={"records": []})

        assert response.status_code == 404

    def test_ingest_requires_records(self, client):
        """Test the body must carry a records list"""
        response = client.post("/api/v1/feed/bills/snapshot", json={"items": []})

        assert response.status_code == 422

    def test_ingest_while_disconnected(self, client, feed):
        """Test a disconnected feed is unavailable"""
        feed.disconnect()

        response = client.post("/api/v1/feed/bills/snapshot", json={"records": []})

        assert response.status_code == 503

    def test_ingest_rejected_for_kafka_backend(self, engine):
        """Test ingest is refused when snapshots come from Kafka"""
        app = create_api_app(engine, feed=KafkaChangeFeed(KafkaSettings()))
        with TestClient(app) as kafka_client:
            response = kafka_client.post("/api/v1/feed/bills/snapshot", json={"records": []})

        assert response.status_code == 409

    def test_ingest_without_feed(self, engine):
        """Test an app without a feed cannot ingest"""
        with TestClient(create_api_app(engine)) as bare_client:
            response = bare_client.post("/api/v1/feed/bills/snapshot", json={"records": []})

        assert response.status_code == 503


class TestHealthRoutes:
    """Tests for health endpoints"""

    def test_liveness(self, client):
        assert client.get("/api/v1/health/live").json() == {"status": "alive"}

    def test_ready_while_live(self, client):
        """Test readiness with a healthy feed"""
        response = client.get("/api/v1/health/ready")

        assert response.status_code == 200

    def test_not_ready_when_stale(self, client, feed):
        """Test readiness drops when the feed is lost"""
        feed.disconnect()

        response = client.get("/api/v1/health/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "feed_unavailable"

    def test_health_reports_feed(self, client, feed):
        """Test the health check includes feed and database state"""
        feed.disconnect()

        data = client.get("/api/v1/health").json()

        assert data["status"] == "degraded"
        assert data["checks"]["feed"]["status"] == "stale"
        assert data["checks"]["feed"]["lost_collections"] == ["bills", "products"]
        assert data["checks"]["database"]["status"] == "disabled"

    def test_metrics_endpoint(self, client, loaded):
        """Test Prometheus exposition includes engine metrics"""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "billing_snapshots_processed_total" in response.text
