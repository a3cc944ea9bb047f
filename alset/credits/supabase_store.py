"""
Supabase credit store.

Mutations go through SECURITY DEFINER Postgres functions (see
sql/credit_ledger_rpc.sql) called with the service role client. Each
function performs the guarded balance update and the ledger insert in one
transaction and answers with a single row of
``{status, balance, amount, transaction_id}``.
"""
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import Client

from alset.core.monitoring import CreditStoreMetricsContext
from alset.credits.store import (
    ICreditStore,
    LedgerMutation,
    MutationStatus,
    StoreConnectionError,
    StoreTimeoutError,
)

logger = structlog.get_logger(__name__)

# SQLSTATE / PostgREST codes that mean "try again later"
TIMEOUT_CODES = {"57014"}
TRANSIENT_CODES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "53300",  # too_many_connections
    "PGRST000",  # could not connect to the database
    "PGRST001",  # database connection error
    "PGRST002",  # schema cache not ready
}
TRANSIENT_CODE_CLASSES = ("08",)  # connection exceptions


def is_transient_code(code: Optional[str]) -> bool:
    if not code:
        return False
    return code in TIMEOUT_CODES or code in TRANSIENT_CODES or code.startswith(TRANSIENT_CODE_CLASSES)


class SupabaseCreditStore(ICreditStore):
    """Credit store backed by Supabase Postgres RPCs."""

    def __init__(self, client: Client):
        self.client = client

    @property
    def name(self) -> str:
        return "supabase"

    @contextmanager
    def _call(self, operation: str):
        """Translate transport and database errors into store errors."""
        with CreditStoreMetricsContext(self.name, operation):
            try:
                yield
            except httpx.TimeoutException as e:
                raise StoreTimeoutError(str(e) or "request timed out", self.name, operation) from e
            except httpx.TransportError as e:
                raise StoreConnectionError(str(e) or "transport error", self.name, operation) from e
            except APIError as e:
                if e.code in TIMEOUT_CODES:
                    raise StoreTimeoutError(e.message or str(e), self.name, operation) from e
                if is_transient_code(e.code):
                    raise StoreConnectionError(e.message or str(e), self.name, operation) from e
                logger.error("Credit store RPC rejected", operation=operation,
                             code=e.code, error=e.message)
                raise

    def _rpc(self, function: str, params: Dict[str, Any], operation: str) -> LedgerMutation:
        with self._call(operation):
            response = self.client.rpc(function, params).execute()

        data = response.data
        row = data[0] if isinstance(data, list) and data else data
        if not row:
            raise StoreConnectionError(f"{function} returned no row", self.name, operation)

        return LedgerMutation(
            status=MutationStatus(row["status"]),
            balance=int(row.get("balance") or 0),
            amount=int(row.get("amount") or 0),
            transaction_id=str(row["transaction_id"]) if row.get("transaction_id") else None,
        )

    def get_balance(self, account_id: str) -> Optional[int]:
        with self._call("get_balance"):
            response = (
                self.client.table("credit_balances")
                .select("amount")
                .eq("account_id", account_id)
                .limit(1)
                .execute()
            )
        if not response.data:
            return None
        return int(response.data[0]["amount"])

    def consume(
        self,
        account_id: str,
        cost: int,
        reference_id: str,
        description: Optional[str] = None,
        reference_table: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerMutation:
        return self._rpc("consume_credits_atomic", {
            "p_account_id": account_id,
            "p_cost": cost,
            "p_reference_id": reference_id,
            "p_description": description,
            "p_reference_table": reference_table,
            "p_metadata": metadata or {},
        }, "consume")

    def grant(
        self,
        account_id: str,
        amount: int,
        kind: str,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerMutation:
        return self._rpc("grant_credits_atomic", {
            "p_account_id": account_id,
            "p_amount": amount,
            "p_kind": kind,
            "p_reference_id": reference_id,
            "p_description": description,
            "p_metadata": metadata or {},
        }, "grant")

    def refund(
        self,
        account_id: str,
        reference_id: str,
        description: Optional[str] = None,
    ) -> LedgerMutation:
        return self._rpc("refund_credits_atomic", {
            "p_account_id": account_id,
            "p_reference_id": reference_id,
            "p_description": description,
        }, "refund")

    def open_account(
        self,
        account_id: str,
        email: Optional[str],
        starting_grant: int,
        reference_id: str,
    ) -> LedgerMutation:
        return self._rpc("bootstrap_account_credits", {
            "p_account_id": account_id,
            "p_email": email,
            "p_starting_grant": starting_grant,
            "p_reference_id": reference_id,
        }, "open_account")

    def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self._call("list_transactions"):
            query = (
                self.client.table("credit_transactions")
                .select("*")
                .eq("account_id", account_id)
            )
            if kind is not None:
                query = query.eq("kind", kind)
            response = (
                query.order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        return response.data or []
