"""
Tests for the HTTP surface.

The app is built with the seeded SQLite store and an in-memory cache;
startup and shutdown run inside the TestClient context.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from stockpulse.cache.memory_cache import MemoryCache

from conftest import FixedTrendEstimator, fixed_today


@pytest.fixture
def app_cache(cache_config, clock):
    return MemoryCache(cache_config, clock)


@pytest.fixture
def client(session_factory, app_cache, cache_config):
    cache_config.fetch_timeout_seconds = 30
    app = create_app(
        session_factory=session_factory,
        cache=app_cache,
        config=cache_config,
        trend_estimator=FixedTrendEstimator(),
        today=fixed_today,
    )
    with TestClient(app) as test_client:
        yield test_client


def tile(payload, title):
    return next(item for item in payload["summaryData"] if item["title"] == title)


# =============================================================================
# DASHBOARD
# =============================================================================

class TestDashboardEndpoint:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_shop_range_dashboard(self, client):
        response = client.get(
            "/api/dashboard",
            params={"shopId": 1, "startDate": "2024-03-01", "endDate": "2024-03-15"},
        )

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert payload["errors"] == []
        assert tile(payload, "Outstanding Invoices")["value"] == "Rs. 300"
        assert payload["shopPerformance"] == [
            {"name": "Colombo Central", "sales": 300.0, "stock": 110}
        ]
        assert payload["meta"]["scope"] == "shop:1"
        assert payload["meta"]["fromCache"] is False

    def test_second_request_is_cached(self, client, app_cache):
        first = client.get("/api/dashboard").json()
        second = client.get("/api/dashboard").json()

        assert first["meta"]["fromCache"] is False
        assert second["meta"]["fromCache"] is True
        assert second["summaryData"] == first["summaryData"]
        assert "test:dashboard:all:global:default" in app_cache.keys()

    def test_inverted_range_rejected(self, client):
        response = client.get(
            "/api/dashboard", params={"startDate": "2024-03-15", "endDate": "2024-03-01"}
        )
        assert response.status_code == 400

    def test_invalid_date_rejected(self, client):
        response = client.get("/api/dashboard", params={"startDate": "yesterday"})
        assert response.status_code == 422

    def test_slice_endpoint(self, client):
        response = client.get("/api/dashboard/slices/inventory_distribution")

        assert response.status_code == 200
        payload = response.json()
        assert payload["data"] == [
            {"name": "Groceries", "value": 100},
            {"name": "Electronics", "value": 15},
        ]
        assert payload["meta"] == {
            "slice": "inventory_distribution",
            "scope": "global",
            "fromCache": False,
        }

        again = client.get("/api/dashboard/slices/inventory_distribution").json()
        assert again["meta"]["fromCache"] is True

    def test_unknown_slice_is_404(self, client):
        response = client.get("/api/dashboard/slices/weather")
        assert response.status_code == 404


# =============================================================================
# CACHE MANAGEMENT
# =============================================================================

class TestCacheEndpoints:

    def test_health_and_stats(self, client):
        client.get("/api/dashboard")
        client.get("/api/dashboard")

        health = client.get("/api/cache/health").json()
        stats = client.get("/api/cache/stats").json()

        assert health["status"] == "healthy"
        assert health["backend"] == "memory"
        assert stats["hits"] == 1
        assert stats["writes"] == 1
        assert stats["hit_rate_percent"] == 50.0

    def test_invalidate_by_pattern(self, client, app_cache):
        client.get("/api/dashboard")
        client.get("/api/dashboard", params={"shopId": 2})

        response = client.post("/api/cache/invalidate", params={"pattern": "dashboard:all:shop:2:*"})

        payload = response.json()
        assert payload["success"] is True
        assert payload["keys_invalidated"] == 1
        assert payload["patterns"] == ["test:dashboard:all:shop:2:*"]
        assert app_cache.keys() == ["test:dashboard:all:global:default"]

    def test_invalidate_shop(self, client, app_cache):
        client.get("/api/dashboard", params={"shopId": 1})
        client.get("/api/dashboard", params={"shopId": 2})

        payload = client.post("/api/cache/invalidate/shop/1").json()

        assert payload["keys_invalidated"] == 1
        assert app_cache.keys() == ["test:dashboard:all:shop:2:default"]

    def test_warm_once(self, client, app_cache):
        payload = client.post("/api/cache/warm").json()

        assert payload["success"] is True
        assert payload["targets"] == ["global", "shop:1", "shop:2"]
        assert payload["failed"] == 0

        dashboard = client.get("/api/dashboard", params={"shopId": 2}).json()
        assert dashboard["meta"]["fromCache"] is True

    def test_background_warmer_start_stop(self, client):
        started = client.post("/api/cache/warm/start", params={"interval_seconds": 3600}).json()
        again = client.post("/api/cache/warm/start", params={"interval_seconds": 3600}).json()
        stopped = client.post("/api/cache/warm/stop").json()

        assert started["status"] == "started"
        assert again["status"] == "already_running"
        assert stopped["running"] is False
