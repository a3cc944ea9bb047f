"""
Typed outcomes returned by the credit ledger gate.

Every expected outcome, including the failures, is a value rather than an
exception so that route handlers decide what the end user sees.
"""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional


class CreditFailure(str, Enum):
    """Why a gate operation did not go through."""
    AUTHENTICATION_REQUIRED = "authentication_required"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    TRANSIENT_STORE_ERROR = "transient_store_error"
    INVALID_TIER = "invalid_tier"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_KIND = "invalid_kind"
    ACCOUNT_NOT_FOUND = "account_not_found"
    NOT_FOUND = "not_found"
    ALREADY_REFUNDED = "already_refunded"

    @property
    def retryable(self) -> bool:
        return self is CreditFailure.TRANSIENT_STORE_ERROR


def _serialize(result) -> Dict[str, Any]:
    data = asdict(result)
    if result.reason is not None:
        data["reason"] = result.reason.value
    return data


@dataclass
class CreditValidation:
    """Advisory pre-check result. Reserves nothing."""
    can_proceed: bool
    tier: str
    credits_required: int
    available_credits: int = 0
    reason: Optional[CreditFailure] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class CreditConsumption:
    """Result of charging an account for a priced action."""
    success: bool
    credits_consumed: int = 0
    remaining_credits: int = 0
    reference_id: Optional[str] = None
    transaction_id: Optional[str] = None
    replayed: bool = False
    reason: Optional[CreditFailure] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass
class CreditGrant:
    """Result of a grant, purchase, refund or signup bootstrap."""
    success: bool
    credits_added: int = 0
    new_balance: int = 0
    reference_id: Optional[str] = None
    transaction_id: Optional[str] = None
    replayed: bool = False
    reason: Optional[CreditFailure] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)
