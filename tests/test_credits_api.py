"""Tests for credit endpoints"""
import pytest
from fastapi.testclient import TestClient

from tests.mocks.stores import FlakyCreditStore

pytestmark = pytest.mark.api


class TestCreditBalance:
    """Test balance and summary endpoints"""

    def test_get_balance(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test balance of a seeded account"""
        memory_store.seed(user_id, balance=5)

        response = client.get("/api/credits/balance", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"credits": 5, "user_id": user_id}

    def test_get_balance_without_account(self, client: TestClient, auth_headers: dict):
        """Test an account with no balance row reads as zero"""
        response = client.get("/api/credits/balance", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["credits"] == 0

    def test_get_balance_unauthorized(self, client: TestClient):
        """Test balance without a token"""
        response = client.get("/api/credits/balance")

        assert response.status_code in (401, 403)

    def test_get_balance_invalid_token(self, client: TestClient, token_factory):
        """Test balance with a token signed by someone else"""
        headers = {"Authorization": f"Bearer {token_factory(secret='not-the-project-secret-0123456789')}"}

        response = client.get("/api/credits/balance", headers=headers)

        assert response.status_code == 401

    def test_get_summary(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test summary totals after a purchase, a search and a refund"""
        memory_store.seed(user_id, balance=5)
        memory_store.grant(user_id, 3, "purchase", reference_id="pi_1", description="Pack of 3")
        memory_store.consume(user_id, 1, "search-1", reference_table="search_history")
        memory_store.consume(user_id, 1, "search-2", reference_table="search_history")
        memory_store.refund(user_id, "search-2")

        response = client.get("/api/credits", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["current_credits"] == 7
        assert data["total_earned"] == 8
        assert data["total_spent"] == 1
        assert len(data["transactions"]) == 5
        assert [t["tier"] for t in data["tiers"]] == ["basic", "smart"]

    def test_store_unavailable(self, client: TestClient, auth_headers: dict):
        """Test a failing store read is reported as a retryable 503"""
        from alset.api.dependencies import get_credit_store
        from alset.api.main import app

        app.dependency_overrides[get_credit_store] = lambda: FlakyCreditStore(
            failures=10, operation="get_balance", error="connection")

        response = client.get("/api/credits/balance", headers=auth_headers)

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["details"]["service"] == "credit_store"
        assert error["details"]["retryable"] is True


class TestCreditHistory:
    """Test ledger history endpoints"""

    def test_history_newest_first(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test history ordering and display fields"""
        memory_store.seed(user_id, balance=5)
        memory_store.consume(user_id, 1, "search-1", description="Smart search: 1 Elm St",
                             reference_table="search_history")

        response = client.get("/api/credits/history", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["limit"] == 50
        assert data["offset"] == 0
        latest, first = data["transactions"]
        assert latest["kind"] == "consumption"
        assert latest["display_amount"] == "-1"
        assert latest["display_type"] == "Consumption"
        assert latest["description"] == "Smart search: 1 Elm St"
        assert first["display_amount"] == "+5"
        assert first["display_type"] == "Grant"

    def test_history_pagination(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test limit and offset"""
        memory_store.seed(user_id, balance=5)
        for i in range(4):
            memory_store.consume(user_id, 1, f"search-{i}")

        response = client.get("/api/credits/history?limit=2&offset=1", headers=auth_headers)

        assert response.status_code == 200
        references = [t["reference_id"] for t in response.json()["transactions"]]
        assert references == ["search-2", "search-1"]

    @pytest.mark.parametrize("query", ["limit=0", "limit=101", "offset=-1"])
    def test_history_invalid_paging(self, client: TestClient, auth_headers: dict, query):
        """Test paging bounds"""
        response = client.get(f"/api/credits/history?{query}", headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "ValidationError"

    def test_usage_breakdown(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test spending per feature net of refunds"""
        memory_store.seed(user_id, balance=10)
        memory_store.consume(user_id, 1, "search-1", reference_table="search_history")
        memory_store.consume(user_id, 1, "search-2", reference_table="search_history")
        memory_store.consume(user_id, 2, "pin-1", reference_table="pins")
        memory_store.consume(user_id, 1, "other-1")
        memory_store.refund(user_id, "search-2")

        response = client.get("/api/credits/usage", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {
            "searches": 1,
            "pins": 2,
            "intents": 0,
            "other": 1,
            "total_credits_used": 4,
        }


class TestCreditValidation:
    """Test the advisory pre-check endpoint"""

    def test_validate_smart_with_credits(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test a funded account may run a smart search"""
        memory_store.seed(user_id, balance=2)

        response = client.post("/api/credits/validate", json={"tier": "smart"}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["can_proceed"] is True
        assert data["credits_required"] == 1
        assert data["available_credits"] == 2
        assert data["reason"] is None

    def test_validate_reserves_nothing(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test validation leaves the ledger untouched"""
        memory_store.seed(user_id, balance=1)

        client.post("/api/credits/validate", json={"tier": "smart"}, headers=auth_headers)
        client.post("/api/credits/validate", json={"tier": "smart"}, headers=auth_headers)

        assert memory_store.balances[user_id] == 1
        assert len(memory_store.entries(user_id)) == 1

    def test_validate_insufficient(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        memory_store.seed(user_id, balance=0)

        response = client.post("/api/credits/validate", json={"tier": "smart"}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["can_proceed"] is False
        assert data["reason"] == "insufficient_credits"

    def test_validate_anonymous_smart(self, client: TestClient):
        """Test anonymous callers are told to sign in"""
        response = client.post("/api/credits/validate", json={"tier": "smart"})

        assert response.status_code == 200
        data = response.json()
        assert data["can_proceed"] is False
        assert data["reason"] == "authentication_required"

    def test_validate_anonymous_basic(self, client: TestClient):
        response = client.post("/api/credits/validate", json={"tier": "basic"})

        assert response.status_code == 200
        assert response.json()["can_proceed"] is True

    def test_validate_invalid_tier(self, client: TestClient, auth_headers: dict):
        """Test an unknown tier is rejected"""
        response = client.post("/api/credits/validate", json={"tier": "platinum"}, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["error"]["details"] == {"tier": "platinum"}


class TestBootstrap:
    """Test account bootstrap endpoint"""

    def test_bootstrap_grants_signup_credits(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test first bootstrap applies the signup grant"""
        response = client.post("/api/credits/bootstrap", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["credits_added"] == 5
        assert data["new_balance"] == 5
        assert data["replayed"] is False
        assert memory_store.accounts[user_id]["email"] == "buyer@example.com"

    def test_bootstrap_is_idempotent(self, client: TestClient, auth_headers: dict, memory_store, user_id):
        """Test repeated bootstrap never grants twice"""
        client.post("/api/credits/bootstrap", headers=auth_headers)
        response = client.post("/api/credits/bootstrap", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["replayed"] is True
        assert memory_store.balances[user_id] == 5
        assert len(memory_store.entries(user_id, kind="grant")) == 1

    def test_bootstrap_unauthorized(self, client: TestClient):
        response = client.post("/api/credits/bootstrap")

        assert response.status_code in (401, 403)
