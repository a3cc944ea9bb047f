"""
Credit balance and credit ledger models.

The balance row is a counter that is only ever changed by relative, guarded
updates; every change appends exactly one CreditTransaction, so the sum of an
account's transaction amounts always equals its balance.
"""
from datetime import datetime
from typing import Optional, Dict, Any
from uuid import uuid4
from sqlalchemy import CheckConstraint, Column, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel
from alset.db.models.account import utcnow


class CreditBalance(SQLModel, table=True):
    """Current credit count for one account."""
    __tablename__ = "credit_balances"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="credit_balance_non_negative"),
    )

    account_id: str = Field(foreign_key="accounts.id", primary_key=True)
    amount: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)


class CreditTransactionBase(SQLModel):
    """Base credit transaction model with shared fields."""
    amount: int = Field(description="Signed amount: positive for grants, purchases and refunds, negative for consumption")
    kind: str = Field(index=True, description="purchase, consumption, refund or grant")
    description: Optional[str] = Field(default=None)
    reference_id: Optional[str] = Field(default=None, index=True, description="Idempotency key, e.g. the search_history id")
    reference_table: Optional[str] = Field(default=None)


class CreditTransaction(CreditTransactionBase, table=True):
    """Append-only ledger entry. Never updated or deleted."""
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "reference_id", "kind", name="uq_credit_transactions_reference"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    account_id: str = Field(foreign_key="accounts.id", index=True)
    extra_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)
