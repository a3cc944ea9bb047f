"""
Read-side credit services: balance summary, formatted history, usage breakdown.

Mutations never happen here; they go through the CreditLedgerGate.
"""
from typing import Any, Dict, Iterator, List
import structlog

from alset.core.config import (
    REFERENCE_TABLE_INTENTS,
    REFERENCE_TABLE_PINS,
    REFERENCE_TABLE_SEARCH_HISTORY,
    TransactionKind,
)
from alset.credits import CreditLedgerGate

logger = structlog.get_logger(__name__)

USAGE_BUCKETS = {
    REFERENCE_TABLE_SEARCH_HISTORY: "searches",
    REFERENCE_TABLE_PINS: "pins",
    REFERENCE_TABLE_INTENTS: "intents",
}

LEDGER_PAGE_SIZE = 500


def format_transaction(transaction: Dict[str, Any]) -> Dict[str, Any]:
    """Add display fields to a ledger entry."""
    amount = int(transaction.get("amount") or 0)
    kind = transaction.get("kind") or ""
    return {
        "id": transaction.get("id"),
        "kind": kind,
        "amount": amount,
        "description": transaction.get("description"),
        "reference_id": transaction.get("reference_id"),
        "reference_table": transaction.get("reference_table"),
        "metadata": transaction.get("metadata") or {},
        "date": transaction.get("created_at"),
        "display_amount": f"+{amount}" if amount > 0 else str(amount),
        "display_type": kind.capitalize(),
    }


class CreditService:
    """Credit read models for one account, built on the gate's store."""

    def __init__(self, gate: CreditLedgerGate):
        self.gate = gate
        self.store = gate.store

    def _iter_ledger(self, account_id: str) -> Iterator[Dict[str, Any]]:
        offset = 0
        while True:
            page = self.store.list_transactions(account_id, limit=LEDGER_PAGE_SIZE, offset=offset)
            yield from page
            if len(page) < LEDGER_PAGE_SIZE:
                return
            offset += LEDGER_PAGE_SIZE

    def get_balance(self, account_id: str) -> int:
        return self.store.get_balance(account_id) or 0

    def get_history(self, account_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest-first ledger page formatted for display."""
        transactions = self.store.list_transactions(account_id, limit=limit, offset=offset)
        return [format_transaction(t) for t in transactions]

    def get_usage_breakdown(self, account_id: str) -> Dict[str, int]:
        """
        Credits spent per reference table, net of refunds.

        Consumptions count their absolute amount against the bucket of their
        reference table; a refund for the same reference table takes it back.
        """
        breakdown = {"searches": 0, "pins": 0, "intents": 0, "other": 0, "total_credits_used": 0}

        for transaction in self._iter_ledger(account_id):
            kind = transaction.get("kind")
            amount = abs(int(transaction.get("amount") or 0))
            if kind == TransactionKind.CONSUMPTION.value:
                spent = amount
            elif kind == TransactionKind.REFUND.value:
                spent = -amount
            else:
                continue
            bucket = USAGE_BUCKETS.get(transaction.get("reference_table"), "other")
            breakdown[bucket] += spent
            breakdown["total_credits_used"] += spent

        return breakdown

    def get_summary(self, account_id: str, recent: int = 10) -> Dict[str, Any]:
        """Balance, lifetime totals, recent entries and tier prices."""
        total_earned = 0
        total_spent = 0
        for transaction in self._iter_ledger(account_id):
            kind = transaction.get("kind")
            amount = int(transaction.get("amount") or 0)
            if kind in (TransactionKind.PURCHASE.value, TransactionKind.GRANT.value):
                total_earned += amount
            elif kind == TransactionKind.CONSUMPTION.value:
                total_spent += -amount
            elif kind == TransactionKind.REFUND.value:
                total_spent -= amount

        return {
            "current_credits": self.get_balance(account_id),
            "total_earned": total_earned,
            "total_spent": total_spent,
            "transactions": self.get_history(account_id, limit=recent),
            "tiers": self.gate.list_tiers(),
        }
