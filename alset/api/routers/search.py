"""
Search router: tier policy and tier-gated property search.

Smart searches are charged before the property lookup runs and refunded
if the lookup fails, so a paid lookup is never handed out for free and a
failed one never costs a credit.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field, field_validator
from slowapi.util import get_remote_address

from alset.api.dependencies import get_credit_gate, get_property_lookup, limiter
from alset.core.exceptions import (
    AlsetException,
    AuthenticationError,
    ExternalServiceError,
    InsufficientCreditsError,
    RateLimitError,
    ValidationError,
)
from alset.core.security import get_optional_user, SupabaseUser
from alset.core.settings import settings
from alset.credits import CreditFailure, CreditLedgerGate
from alset.integrations.zillow import PropertyLookupError, PropertyLookupRateLimited, ZillowClient

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


class SearchRequest(BaseModel):
    """Property search request schema."""
    address: str = Field(..., min_length=1, max_length=500)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    tier: str = "basic"
    search_id: Optional[str] = Field(None, max_length=128)

    @field_validator("address")
    def validate_address(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Address is required")
        return v


def failure_to_exception(reason: CreditFailure, message: str, required: int = 0, available: int = 0) -> AlsetException:
    """Map a gate failure to the HTTP error shown to the end user."""
    if reason == CreditFailure.AUTHENTICATION_REQUIRED:
        return AuthenticationError(message)
    if reason == CreditFailure.INSUFFICIENT_CREDITS:
        return InsufficientCreditsError(required, available)
    if reason == CreditFailure.INVALID_TIER:
        return ValidationError(message, details={"reason": reason.value})
    if reason == CreditFailure.TRANSIENT_STORE_ERROR:
        return ExternalServiceError("credit_store", message, retryable=True)
    return AlsetException(message, status_code=409, details={"reason": reason.value})


def _search_metadata(tier: str, latitude: float, longitude: float) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "coordinates": {"latitude": latitude, "longitude": longitude},
        "search_type": tier,
        "data_source": "zillow" if tier != "basic" else "geocoder",
    }


@router.get("/tiers")
def get_search_tiers(gate: CreditLedgerGate = Depends(get_credit_gate)) -> Dict[str, Any]:
    """List the search tiers with their price and features."""
    return {"tiers": gate.list_tiers()}


@router.post("")
@limiter.limit(settings.search_rate_limit)
def search_property(
    request: Request,
    body: SearchRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: Optional[SupabaseUser] = Depends(get_optional_user),
    gate: CreditLedgerGate = Depends(get_credit_gate),
    lookup: ZillowClient = Depends(get_property_lookup),
) -> Dict[str, Any]:
    """Run a property search, charging the caller for priced tiers."""
    account_id = current_user.id if current_user else None

    client_reference = body.search_id or idempotency_key

    validation = gate.validate(account_id, body.tier)
    # A retry of a search already charged may have spent the last credit;
    # let consume find the existing charge instead of refusing it here.
    retry_of_charge = bool(client_reference) and validation.reason == CreditFailure.INSUFFICIENT_CREDITS
    if not validation.can_proceed and not retry_of_charge:
        raise failure_to_exception(validation.reason, validation.message,
                                   validation.credits_required, validation.available_credits)

    if validation.credits_required == 0:
        return {
            "success": True,
            "tier": validation.tier,
            "data": {
                "address": body.address,
                "latitude": body.latitude,
                "longitude": body.longitude,
            },
            "search_metadata": _search_metadata(validation.tier, body.latitude, body.longitude),
        }

    reference_id = client_reference or str(uuid.uuid4())
    logger.info("Smart search requested", user_id=account_id, reference_id=reference_id,
                remote_addr=get_remote_address(request))

    consumption = gate.consume(
        account_id,
        validation.tier,
        reference_id=reference_id,
        description=f"Smart search: {body.address}",
        metadata={"address": body.address, "latitude": body.latitude, "longitude": body.longitude},
    )
    if not consumption.success:
        raise failure_to_exception(consumption.reason, consumption.message,
                                   validation.credits_required, consumption.remaining_credits)

    try:
        property_data = lookup.lookup(body.address, body.latitude, body.longitude)
    except PropertyLookupError as e:
        refund = gate.refund(account_id, reference_id,
                             description=f"Refund: property lookup failed ({e.message})")
        if not refund.success:
            logger.error("Refund after failed lookup did not apply", user_id=account_id,
                         reference_id=reference_id, reason=refund.reason.value if refund.reason else None)
        else:
            logger.warning("Smart search refunded", user_id=account_id,
                           reference_id=reference_id, error=e.message)
        if isinstance(e, PropertyLookupRateLimited):
            raise RateLimitError(e.message)
        raise ExternalServiceError("property_lookup", e.message, retryable=e.retryable)

    return {
        "success": True,
        "tier": validation.tier,
        "data": property_data,
        "credits": {
            "consumed": consumption.credits_consumed,
            "remaining": consumption.remaining_credits,
            "reference_id": consumption.reference_id,
            "replayed": consumption.replayed,
        },
        "search_metadata": _search_metadata(validation.tier, body.latitude, body.longitude),
    }
