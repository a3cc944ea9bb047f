"""Tests for Supabase token verification"""
import time

import jwt

from alset.core.security import SecurityUtils
from tests.conftest import TEST_JWT_SECRET, TEST_USER_ID


class TestTokenVerification:
    """Test JWT validation against the project secret"""

    def test_valid_token(self, token_factory):
        payload = SecurityUtils.verify_supabase_token(token_factory())

        assert payload["sub"] == TEST_USER_ID
        assert payload["aud"] == "authenticated"

    def test_expired_token(self, token_factory):
        assert SecurityUtils.verify_supabase_token(token_factory(expires_in=-60)) is None

    def test_wrong_secret(self, token_factory):
        token = token_factory(secret="another-project-secret-0123456789abcdef")

        assert SecurityUtils.verify_supabase_token(token) is None

    def test_wrong_audience(self, token_factory):
        """Test anon-key tokens are not user tokens"""
        assert SecurityUtils.verify_supabase_token(token_factory(audience="anon")) is None

    def test_garbage(self):
        assert SecurityUtils.verify_supabase_token("not-a-jwt") is None

    def test_extract_user(self, token_factory):
        payload = SecurityUtils.verify_supabase_token(token_factory())

        user = SecurityUtils.extract_user_from_token(payload)

        assert user.id == TEST_USER_ID
        assert user.email == "buyer@example.com"
        assert user.role == "authenticated"

    def test_missing_subject(self):
        """Test a token without sub yields no user"""
        token = jwt.encode(
            {"aud": "authenticated", "exp": int(time.time()) + 60},
            TEST_JWT_SECRET,
            algorithm="HS256",
        )
        payload = SecurityUtils.verify_supabase_token(token)

        assert payload is not None
        assert SecurityUtils.extract_user_from_token(payload) is None
