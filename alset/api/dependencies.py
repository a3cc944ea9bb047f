"""
FastAPI dependencies wiring the credit gate and its collaborators.
"""
from functools import lru_cache

from fastapi import Depends
from slowapi import Limiter
from slowapi.util import get_remote_address

from alset.api.services import CreditService
from alset.core.settings import settings
from alset.credits import CreditLedgerGate, ICreditStore, build_credit_gate
from alset.credits import get_credit_store as _configured_store
from alset.integrations.zillow import ZillowClient, get_property_lookup as _configured_lookup

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.enable_rate_limiting,
)


@lru_cache()
def get_credit_store() -> ICreditStore:
    """Process-wide credit store handle."""
    return _configured_store()


def get_credit_gate(store: ICreditStore = Depends(get_credit_store)) -> CreditLedgerGate:
    return build_credit_gate(store)


def get_credit_service(gate: CreditLedgerGate = Depends(get_credit_gate)) -> CreditService:
    return CreditService(gate)


@lru_cache()
def get_property_lookup() -> ZillowClient:
    return _configured_lookup()
