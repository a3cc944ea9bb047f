"""
Account model: a registered user as seen by the credit ledger.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlmodel import Field, SQLModel
from alset.core.config import AccountRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountBase(SQLModel):
    """Base account model with shared fields."""
    email: Optional[str] = Field(default=None, index=True)
    role: str = Field(default=AccountRole.USER.value)


class Account(AccountBase, table=True):
    """Account database model. The id is the Supabase auth user id."""
    __tablename__ = "accounts"

    id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
