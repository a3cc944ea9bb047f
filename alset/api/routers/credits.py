"""
Credits router for balance, ledger history and the advisory tier pre-check.
"""
import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import Dict, Any, Optional

from alset.api.dependencies import get_credit_gate, get_credit_service
from alset.api.services import CreditService
from alset.core.exceptions import ExternalServiceError, ValidationError
from alset.core.security import get_current_active_user, get_optional_user, SupabaseUser
from alset.credits import CreditFailure, CreditLedgerGate, StoreError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


class ValidateRequest(BaseModel):
    """Advisory pre-check request."""
    tier: str


def _store_unavailable(error: StoreError, account_id: str) -> ExternalServiceError:
    logger.error("Credit store read failed", account_id=account_id, error=str(error))
    return ExternalServiceError("credit_store", "Credit information is temporarily unavailable", retryable=True)


@router.get("")
def get_credit_summary(
    current_user: SupabaseUser = Depends(get_current_active_user),
    service: CreditService = Depends(get_credit_service),
) -> Dict[str, Any]:
    """Get user's balance, lifetime totals and recent transactions."""
    try:
        return service.get_summary(current_user.id)
    except StoreError as e:
        raise _store_unavailable(e, current_user.id)


@router.get("/balance")
def get_credit_balance(
    current_user: SupabaseUser = Depends(get_current_active_user),
    service: CreditService = Depends(get_credit_service),
) -> Dict[str, Any]:
    """Get user's current credit balance."""
    try:
        credits = service.get_balance(current_user.id)
    except StoreError as e:
        raise _store_unavailable(e, current_user.id)

    return {
        "credits": credits,
        "user_id": current_user.id,
    }


@router.get("/history")
def get_credit_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: SupabaseUser = Depends(get_current_active_user),
    service: CreditService = Depends(get_credit_service),
) -> Dict[str, Any]:
    """Get user's credit transaction history, newest first."""
    try:
        transactions = service.get_history(current_user.id, limit=limit, offset=offset)
    except StoreError as e:
        raise _store_unavailable(e, current_user.id)

    return {
        "transactions": transactions,
        "total": len(transactions),
        "limit": limit,
        "offset": offset,
    }


@router.get("/usage")
def get_credit_usage(
    current_user: SupabaseUser = Depends(get_current_active_user),
    service: CreditService = Depends(get_credit_service),
) -> Dict[str, int]:
    """Get credits spent per feature, net of refunds."""
    try:
        return service.get_usage_breakdown(current_user.id)
    except StoreError as e:
        raise _store_unavailable(e, current_user.id)


@router.post("/validate")
def validate_credits(
    body: ValidateRequest,
    current_user: Optional[SupabaseUser] = Depends(get_optional_user),
    gate: CreditLedgerGate = Depends(get_credit_gate),
) -> Dict[str, Any]:
    """
    Advisory check of whether the caller can run a search of ``tier``.

    Nothing is reserved; the charge happens when the search runs.
    """
    result = gate.validate(current_user.id if current_user else None, body.tier)

    if result.reason == CreditFailure.INVALID_TIER:
        raise ValidationError(result.message, details={"tier": body.tier})
    if result.reason == CreditFailure.TRANSIENT_STORE_ERROR:
        raise ExternalServiceError("credit_store", result.message, retryable=True)

    return result.to_dict()


@router.post("/bootstrap")
def bootstrap_credits(
    current_user: SupabaseUser = Depends(get_current_active_user),
    gate: CreditLedgerGate = Depends(get_credit_gate),
) -> Dict[str, Any]:
    """Create the caller's credit balance and apply the signup grant once."""
    result = gate.open_account(current_user.id, current_user.email)

    if result.reason == CreditFailure.TRANSIENT_STORE_ERROR:
        raise ExternalServiceError("credit_store", result.message, retryable=True)
    if not result.success:
        raise ValidationError(result.message)

    logger.info("Account bootstrapped", user_id=current_user.id,
                replayed=result.replayed, balance=result.new_balance)
    return result.to_dict()
