"""
Mock credit stores for testing the ledger gate and the HTTP layer.

``InMemoryCreditStore`` behaves like the database-backed stores: each
mutation is applied under one lock, standing in for the balance row lock,
and (account, reference, kind) is unique. The flaky and lossy wrappers
simulate store timeouts and responses lost after a commit.
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from alset.credits.store import (
    ICreditStore,
    LedgerMutation,
    MutationStatus,
    StoreConnectionError,
    StoreTimeoutError,
)


class InMemoryCreditStore(ICreditStore):
    """Thread-safe in-memory credit store."""

    def __init__(self):
        self._lock = threading.Lock()
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.balances: Dict[str, int] = {}
        self.transactions: List[Dict[str, Any]] = []
        self.calls: List[str] = []

    @property
    def name(self) -> str:
        return "memory"

    # Test helpers

    def seed(self, account_id: str, balance: int = 0, email: Optional[str] = None):
        """Create an account whose opening balance is recorded as a grant."""
        with self._lock:
            self.accounts[account_id] = {"id": account_id, "email": email}
            self.balances[account_id] = balance
            if balance:
                self._append(account_id, balance, "grant", f"seed-{account_id}", "Seed balance")

    def entries(self, account_id: str, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            t for t in self.transactions
            if t["account_id"] == account_id and (kind is None or t["kind"] == kind)
        ]

    def ledger_sum(self, account_id: str) -> int:
        return sum(t["amount"] for t in self.entries(account_id))

    # Internals, called with the lock held

    def _find(self, account_id: str, reference_id: Optional[str], kind: str) -> Optional[Dict[str, Any]]:
        if reference_id is None:
            return None
        for t in self.transactions:
            if t["account_id"] == account_id and t["reference_id"] == reference_id and t["kind"] == kind:
                return t
        return None

    def _append(self, account_id, amount, kind, reference_id, description,
                reference_table=None, metadata=None) -> Dict[str, Any]:
        entry = {
            "id": str(uuid.uuid4()),
            "account_id": account_id,
            "amount": amount,
            "kind": kind,
            "description": description,
            "reference_id": reference_id,
            "reference_table": reference_table,
            "metadata": metadata or {},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self.transactions.append(entry)
        return entry

    def _replayed(self, account_id: str, entry: Dict[str, Any], status=MutationStatus.REPLAYED) -> LedgerMutation:
        return LedgerMutation(
            status=status,
            balance=self.balances.get(account_id, 0),
            amount=entry["amount"],
            transaction_id=entry["id"],
        )

    # ICreditStore

    def get_balance(self, account_id: str) -> Optional[int]:
        self.calls.append("get_balance")
        with self._lock:
            return self.balances.get(account_id)

    def consume(self, account_id, cost, reference_id, description=None,
                reference_table=None, metadata=None) -> LedgerMutation:
        self.calls.append("consume")
        with self._lock:
            existing = self._find(account_id, reference_id, "consumption")
            if existing is not None:
                refunded = self._find(account_id, reference_id, "refund") is not None
                return self._replayed(
                    account_id, existing,
                    MutationStatus.REFUNDED if refunded else MutationStatus.REPLAYED,
                )
            if account_id not in self.balances:
                return LedgerMutation(status=MutationStatus.ACCOUNT_NOT_FOUND)
            if self.balances[account_id] < cost:
                return LedgerMutation(status=MutationStatus.INSUFFICIENT, balance=self.balances[account_id])
            self.balances[account_id] -= cost
            entry = self._append(account_id, -cost, "consumption", reference_id,
                                 description, reference_table, metadata)
            return LedgerMutation(MutationStatus.APPLIED, self.balances[account_id], -cost, entry["id"])

    def grant(self, account_id, amount, kind, reference_id=None, description=None,
              metadata=None) -> LedgerMutation:
        self.calls.append("grant")
        with self._lock:
            existing = self._find(account_id, reference_id, kind)
            if existing is not None:
                return self._replayed(account_id, existing)
            if account_id not in self.balances:
                return LedgerMutation(status=MutationStatus.ACCOUNT_NOT_FOUND)
            self.balances[account_id] += amount
            entry = self._append(account_id, amount, kind, reference_id, description, metadata=metadata)
            return LedgerMutation(MutationStatus.APPLIED, self.balances[account_id], amount, entry["id"])

    def refund(self, account_id, reference_id, description=None) -> LedgerMutation:
        self.calls.append("refund")
        with self._lock:
            existing = self._find(account_id, reference_id, "refund")
            if existing is not None:
                return self._replayed(account_id, existing)
            charge = self._find(account_id, reference_id, "consumption")
            if charge is None:
                return LedgerMutation(status=MutationStatus.NOT_FOUND,
                                      balance=self.balances.get(account_id, 0))
            amount = abs(charge["amount"])
            self.balances[account_id] += amount
            entry = self._append(account_id, amount, "refund", reference_id, description,
                                 charge["reference_table"])
            return LedgerMutation(MutationStatus.APPLIED, self.balances[account_id], amount, entry["id"])

    def open_account(self, account_id, email, starting_grant, reference_id) -> LedgerMutation:
        self.calls.append("open_account")
        with self._lock:
            self.accounts.setdefault(account_id, {"id": account_id, "email": email})
            self.balances.setdefault(account_id, 0)
            existing = self._find(account_id, reference_id, "grant")
            if existing is not None:
                return self._replayed(account_id, existing)
            if starting_grant <= 0:
                return LedgerMutation(MutationStatus.APPLIED, self.balances[account_id])
            self.balances[account_id] += starting_grant
            entry = self._append(account_id, starting_grant, "grant", reference_id, "Signup credit grant")
            return LedgerMutation(MutationStatus.APPLIED, self.balances[account_id], starting_grant, entry["id"])

    def list_transactions(self, account_id, limit=50, offset=0, kind=None) -> List[Dict[str, Any]]:
        self.calls.append("list_transactions")
        with self._lock:
            newest_first = list(reversed(self.entries(account_id, kind)))
        return newest_first[offset:offset + limit]


class FlakyCreditStore(InMemoryCreditStore):
    """
    Store that fails the next ``failures`` calls of ``operation`` before
    answering normally.

    Args:
        failures: number of calls that fail
        operation: which method fails ("consume", "get_balance", ...)
        error: "timeout" or "connection"
        lose_response: apply the mutation, then fail as if the response
            was lost on the way back
    """

    def __init__(self, failures: int = 1, operation: str = "consume",
                 error: str = "timeout", lose_response: bool = False):
        super().__init__()
        self.failures = failures
        self.operation = operation
        self.error = error
        self.lose_response = lose_response
        self.attempts = 0

    def _fail(self):
        if self.error == "connection":
            raise StoreConnectionError("connection reset by peer", self.name, self.operation)
        raise StoreTimeoutError("statement timeout", self.name, self.operation)

    def _maybe_fail(self, operation: str, call):
        if operation != self.operation:
            return call()
        self.attempts += 1
        if self.failures <= 0:
            return call()
        self.failures -= 1
        if self.lose_response:
            call()
        self._fail()

    def get_balance(self, account_id):
        return self._maybe_fail("get_balance", lambda: super(FlakyCreditStore, self).get_balance(account_id))

    def consume(self, account_id, cost, reference_id, description=None,
                reference_table=None, metadata=None):
        return self._maybe_fail("consume", lambda: super(FlakyCreditStore, self).consume(
            account_id, cost, reference_id, description, reference_table, metadata))

    def grant(self, account_id, amount, kind, reference_id=None, description=None, metadata=None):
        return self._maybe_fail("grant", lambda: super(FlakyCreditStore, self).grant(
            account_id, amount, kind, reference_id, description, metadata))

    def refund(self, account_id, reference_id, description=None):
        return self._maybe_fail("refund", lambda: super(FlakyCreditStore, self).refund(
            account_id, reference_id, description))
