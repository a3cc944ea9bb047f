# Credit ledger package initialization

from alset.core.settings import settings
from .gate import CreditLedgerGate
from .results import CreditConsumption, CreditFailure, CreditGrant, CreditValidation
from .store import ICreditStore, LedgerMutation, MutationStatus, StoreError


def get_credit_store() -> ICreditStore:
    """Get the configured credit store instance."""
    if settings.credit_store_backend == "sql":
        from .sql_store import SQLCreditStore
        from alset.db.session import engine
        return SQLCreditStore(engine)
    from .supabase_store import SupabaseCreditStore
    from alset.core.supa_request import service_client
    return SupabaseCreditStore(service_client())


def build_credit_gate(store: ICreditStore) -> CreditLedgerGate:
    """Wrap a store in a gate using the configured retry policy."""
    return CreditLedgerGate(
        store,
        max_attempts=settings.credit_store_max_attempts,
        retry_delays=settings.credit_store_retry_delays,
        signup_grant=settings.signup_grant_credits,
    )


__all__ = [
    "CreditLedgerGate",
    "CreditConsumption",
    "CreditFailure",
    "CreditGrant",
    "CreditValidation",
    "ICreditStore",
    "LedgerMutation",
    "MutationStatus",
    "StoreError",
    "get_credit_store",
    "build_credit_gate",
]
