"""
Shared fixtures for the credit ledger tests.
"""

import os
import time

import jwt
import pytest
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_JWT_SECRET = "test-supabase-jwt-secret-0123456789abcdef"
TEST_USER_ID = "11111111-1111-4111-8111-111111111111"
TEST_USER_EMAIL = "buyer@example.com"


# Environment setup for tests
def setup_test_environment():
    """Setup environment variables for testing."""
    env_vars = {
        "SUPABASE_URL": "https://test-project.supabase.co",
        "SUPABASE_ANON_KEY": "test-anon-key",
        "SUPABASE_SERVICE_ROLE_KEY": "test-service-role-key",
        "SUPABASE_JWT_SECRET": TEST_JWT_SECRET,
        "DATABASE_URL": TEST_DATABASE_URL,
        "CREDIT_STORE_BACKEND": "supabase",
        "CREDIT_STORE_RETRY_DELAYS": "0",
        "ENVIRONMENT": "testing",
        "ENABLE_RATE_LIMITING": "false",
        "ENABLE_METRICS": "false",
        "SENTRY_DSN": "",
        "RAPIDAPI_KEY": "test-rapidapi-key",
        "LOG_LEVEL": "WARNING",
    }

    for key, value in env_vars.items():
        os.environ[key] = value


# Settings are read on first import of the alset package
setup_test_environment()


def pytest_configure(config):
    """Configure pytest for the ledger tests."""
    setup_test_environment()


@pytest.fixture
def memory_store():
    """Thread-safe in-memory credit store."""
    from tests.mocks.stores import InMemoryCreditStore
    return InMemoryCreditStore()


@pytest.fixture
def sleeps():
    """Delays requested by the gate between retries."""
    return []


@pytest.fixture
def gate(memory_store, sleeps):
    """Credit ledger gate over the in-memory store, with recorded sleeps."""
    from alset.credits import CreditLedgerGate
    return CreditLedgerGate(
        memory_store,
        max_attempts=3,
        retry_delays=[0.1, 0.5],
        signup_grant=5,
        sleep=sleeps.append,
    )


@pytest.fixture
def sql_engine():
    """In-memory SQLite engine with the ledger tables."""
    from sqlmodel import SQLModel, create_engine
    import alset.db.models  # noqa: F401

    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)

    yield engine

    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine):
    """SQL credit store on the test engine."""
    from alset.credits.sql_store import SQLCreditStore
    return SQLCreditStore(sql_engine)


@pytest.fixture
def property_lookup():
    """Property lookup returning canned Zillow data."""
    from tests.mocks.lookup import MockPropertyLookup
    return MockPropertyLookup()


@pytest.fixture
def client(memory_store, property_lookup):
    """Test client with the credit store and property lookup swapped for mocks."""
    from fastapi.testclient import TestClient
    from alset.api.main import app
    from alset.api.dependencies import get_credit_store, get_property_lookup

    app.dependency_overrides[get_credit_store] = lambda: memory_store
    app.dependency_overrides[get_property_lookup] = lambda: property_lookup

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def token_factory():
    """Build Supabase-style access tokens signed with the test secret."""
    def make_token(user_id=TEST_USER_ID, email=TEST_USER_EMAIL, expires_in=3600,
                   secret=TEST_JWT_SECRET, audience="authenticated"):
        payload = {
            "sub": user_id,
            "email": email,
            "aud": audience,
            "role": "authenticated",
            "exp": int(time.time()) + expires_in,
        }
        return jwt.encode(payload, secret, algorithm="HS256")
    return make_token


@pytest.fixture
def user_id():
    return TEST_USER_ID


@pytest.fixture
def auth_headers(token_factory):
    """Authorization header for the test user."""
    return {"Authorization": f"Bearer {token_factory()}"}
