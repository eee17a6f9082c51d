import pytest
from fastapi.testclient import TestClient
from trip_analytics.main import app
from trip_analytics.api.dependencies import get_analytics_source
from trip_analytics.errors import QueryTimeout, StoreError

class FailingSource:
    name = "failing"

    def __init__(self, error):
        self.error = error

    async def get_driver_analytics(self, driver_id, timeout=None):
        raise self.error

@pytest.fixture
def client():
    """App client with sample data loaded."""
    with TestClient(app) as client:
        response = client.post("/sample-data")
        assert response.status_code == 200
        yield client
    app.dependency_overrides.clear()

class TestIntegration:
    """Integration tests for the HTTP surface."""

    def test_root_and_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "analytics" in response.json()

        response = client.get("/health")
        assert response.status_code == 200
        health = response.json()
        assert health["status"] == "healthy"
        assert health["database"] == "healthy"
        assert health["cache"] == "healthy"

    def test_sample_data_is_idempotent(self, client):
        response = client.post("/sample-data")
        assert response.status_code == 200
        assert response.json()["created"] == {"drivers": 0, "trips": 0, "payments": 0, "ratings": 0}

    def test_driver_analytics(self, client):
        response = client.get("/drivers/1/analytics")
        assert response.status_code == 200
        data = response.json()

        assert data["driver_id"] == 1
        assert data["driver_name"] == "John Doe"
        assert data["onboarding_date"] == "2023-01-15"
        assert data["total_trips"] == 3
        assert data["total_earnings"] == 530.0
        assert data["average_rating"] == 4.5
        assert [trip["trip_id"] for trip in data["trips"]] == [3, 2, 1]
        assert data["trips"][0] == {
            "trip_id": 3,
            "start_location": "Philadelphia",
            "end_location": "Washington DC",
            "trip_date": "2024-01-25",
            "amount": 180.0,
            "rating_value": 4.0,
            "comment": "Good trip",
        }

    def test_unoptimized_matches_optimized(self, client):
        optimized = client.get("/drivers/2/analytics").json()
        response = client.get("/drivers/2/analytics/unoptimized")
        assert response.status_code == 200
        assert response.json() == optimized
        assert optimized["total_earnings"] == 370.0
        assert optimized["average_rating"] == 4.5

    def test_compare_endpoint(self, client):
        response = client.get("/drivers/1/analytics/compare")
        assert response.status_code == 200
        data = response.json()
        assert data["consistent"] is True
        assert all(data["parity"].values())

    @pytest.mark.parametrize("path", ["/drivers/999999/analytics", "/drivers/999999/analytics/unoptimized"])
    def test_unknown_driver_is_404(self, client, path):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json()["detail"] == "Driver not found"

    @pytest.mark.parametrize("driver_id", ["abc", "0", "-3", "1.5", "²", "٣"])
    def test_invalid_driver_id_is_400(self, client, driver_id):
        for path in (f"/drivers/{driver_id}/analytics", f"/drivers/{driver_id}/analytics/unoptimized"):
            response = client.get(path)
            assert response.status_code == 400

    @pytest.mark.parametrize("error", [StoreError("password=hunter2 leaked"), QueryTimeout("trips", 5.0)])
    def test_internal_errors_are_generic_500(self, client, error):
        app.dependency_overrides[get_analytics_source] = lambda: FailingSource(error)

        response = client.get("/drivers/1/analytics")

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal server error"
        assert "hunter2" not in response.text

    def test_second_request_is_cached(self, client):
        client.get("/drivers/1/analytics")
        client.get("/drivers/1/analytics")

        response = client.get("/drivers/performance/cached-analytics")
        assert response.status_code == 200
        metrics = response.json()
        assert metrics["total_requests"] == 2
        assert metrics["cache_hits"] == 1

        # Only the miss reached the fan-out strategy
        fan_out = client.get("/drivers/performance/fan-out").json()
        assert fan_out["total_requests"] == 1

    def test_cache_invalidation(self, client):
        client.get("/drivers/1/analytics")

        response = client.delete("/drivers/1/analytics/cache")
        assert response.status_code == 200
        assert response.json() == {"driver_id": 1, "invalidated": True}

        client.get("/drivers/1/analytics")
        assert client.get("/drivers/performance/fan-out").json()["total_requests"] == 2

        assert client.delete("/drivers/abc/analytics/cache").status_code == 400

    def test_cache_clear_by_pattern(self, client):
        client.get("/drivers/1/analytics")
        client.get("/drivers/2/analytics")

        response = client.delete("/drivers/cache", params={"pattern": "driver:*"})
        assert response.status_code == 200
        assert response.json()["deleted"] == 2

    def test_performance_report_and_history(self, client):
        client.get("/drivers/1/analytics")
        client.get("/drivers/1/analytics/unoptimized")

        report = client.get("/drivers/performance/report").json()
        assert report["endpoints"]["single-query"]["total_requests"] == 1
        assert "performance_comparison" in report["summary"]

        history = client.get("/drivers/performance/single-query/history", params={"limit": 10}).json()
        assert len(history) == 1
        assert history[0]["driver_id"] == 1
        assert history[0]["status"] == "success"

    def test_benchmark(self, client):
        response = client.post("/drivers/1/benchmark", params={"total_requests": 3, "concurrency": 2})
        assert response.status_code == 200
        data = response.json()
        assert data["single_query"]["successful_requests"] == 3
        assert data["fan_out"]["successful_requests"] == 3

        assert client.post("/drivers/999999/benchmark", params={"total_requests": 1}).status_code == 404
        assert client.post("/drivers/1/benchmark", params={"total_requests": 0}).status_code == 422

if __name__ == "__main__":
    pytest.main([__file__])
