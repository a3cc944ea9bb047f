"""
Security utilities for Supabase authentication.
"""
from typing import Optional
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import decode as jwt_decode, InvalidTokenError
from alset.core.settings import settings

logger = structlog.get_logger(__name__)

# JWT token scheme
bearer_scheme = HTTPBearer()
optional_bearer_scheme = HTTPBearer(auto_error=False)


class SupabaseUser:
    """User object extracted from Supabase JWT token."""

    def __init__(self, user_id: str, email: Optional[str], payload: dict):
        self.id = user_id
        self.email = email
        self.role = payload.get("role", "authenticated")
        self.payload = payload

    def __str__(self):
        return f"SupabaseUser(id={self.id}, email={self.email})"

    def __repr__(self):
        return self.__str__()


class SecurityUtils:
    """Security utility functions for Supabase."""

    @staticmethod
    def verify_supabase_token(token: str) -> Optional[dict]:
        """Verify and decode Supabase JWT token."""
        try:
            return jwt_decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated"
            )
        except InvalidTokenError as e:
            logger.info("JWT validation failed", error=str(e))
            return None

    @staticmethod
    def extract_user_from_token(payload: dict) -> Optional[SupabaseUser]:
        """Extract user information from JWT payload."""
        user_id = payload.get("sub")
        if not user_id:
            return None
        return SupabaseUser(user_id=user_id, email=payload.get("email"), payload=payload)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> SupabaseUser:
    """Get current authenticated user from Supabase JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = SecurityUtils.verify_supabase_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user = SecurityUtils.extract_user_from_token(payload)
    if user is None:
        raise credentials_exception

    return user


def get_current_active_user(
    current_user: SupabaseUser = Depends(get_current_user)
) -> SupabaseUser:
    """Get current active user."""
    return current_user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer_scheme)
) -> Optional[SupabaseUser]:
    """Get current user if a valid token is provided, otherwise None (anonymous)."""
    if not credentials:
        return None

    payload = SecurityUtils.verify_supabase_token(credentials.credentials)
    if payload is None:
        return None

    return SecurityUtils.extract_user_from_token(payload)
