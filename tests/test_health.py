"""Tests for service endpoints"""
from fastapi.testclient import TestClient

from tests.mocks.stores import FlakyCreditStore


class TestHealthEndpoints:
    """Test liveness, readiness and metrics"""

    def test_healthz(self, client: TestClient):
        response = client.get("/healthz")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "alset-api"

    def test_readyz(self, client: TestClient):
        """Test readiness with a reachable credit store"""
        response = client.get("/readyz")

        assert response.status_code == 200
        data = response.json()
        assert data["healthy"] is True
        assert data["services"]["credit_store"]["details"]["backend"] == "memory"
        assert data["services"]["property_lookup"]["details"]["configured"] is True

    def test_readyz_store_down(self, client: TestClient):
        """Test readiness fails when the credit store cannot be read"""
        from alset.api.dependencies import get_credit_store
        from alset.api.main import app

        app.dependency_overrides[get_credit_store] = lambda: FlakyCreditStore(
            failures=1, operation="get_balance", error="connection")

        response = client.get("/readyz")

        assert response.status_code == 503
        store = response.json()["services"]["credit_store"]
        assert store["healthy"] is False
        assert store["error"] == "credit store unreachable"

    def test_metrics(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test credit metrics are exported"""
        memory_store.seed(user_id, balance=1)
        client.post("/api/search", json={
            "address": "1 Elm St", "latitude": 1.0, "longitude": 1.0, "tier": "smart",
        }, headers=auth_headers)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "alset_credit_operations_total" in response.text
        assert "alset_credits_consumed_total" in response.text

    def test_root(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == 200
        assert "Alset Property Intelligence API" in response.json()["message"]
