"""
Base interface for durable credit stores.

A store owns the balance counter and the append-only ledger. Each mutating
call is one atomic round trip: the guarded balance update and the ledger
insert commit together or not at all, and a repeated reference id is
recognised by the store's unique constraint on (account, reference, kind).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class MutationStatus(str, Enum):
    """Outcome of one atomic ledger mutation."""
    APPLIED = "applied"
    REPLAYED = "replayed"
    INSUFFICIENT = "insufficient"
    ACCOUNT_NOT_FOUND = "account_not_found"
    NOT_FOUND = "not_found"
    REFUNDED = "refunded"


@dataclass
class LedgerMutation:
    """Standardized store response for consume, grant, refund and bootstrap."""
    status: MutationStatus
    balance: int = 0
    amount: int = 0
    transaction_id: Optional[str] = None


class StoreError(Exception):
    """Base credit store error."""
    def __init__(self, message: str, store: str, operation: Optional[str] = None):
        self.message = message
        self.store = store
        self.operation = operation
        super().__init__(f"{store}: {message}")


class StoreTimeoutError(StoreError):
    """The store did not answer within the configured timeout."""
    pass


class StoreConnectionError(StoreError):
    """The store could not be reached or dropped the connection."""
    pass


TRANSIENT_STORE_ERRORS = (StoreTimeoutError, StoreConnectionError)


class ICreditStore(ABC):
    """Abstract base class for credit stores."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name identifier."""
        pass

    @abstractmethod
    def get_balance(self, account_id: str) -> Optional[int]:
        """
        Point read of the current balance.

        Returns:
            The balance, or None when the account has no balance row
        """
        pass

    @abstractmethod
    def consume(
        self,
        account_id: str,
        cost: int,
        reference_id: str,
        description: Optional[str] = None,
        reference_table: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerMutation:
        """
        Decrement the balance by ``cost`` only if it stays non-negative and
        append a consumption entry of ``-cost``, atomically.

        Returns:
            APPLIED, REPLAYED (reference already charged), REFUNDED
            (reference charged and refunded, closed for reuse), INSUFFICIENT
            or ACCOUNT_NOT_FOUND

        Raises:
            StoreTimeoutError, StoreConnectionError: transient failures
        """
        pass

    @abstractmethod
    def grant(
        self,
        account_id: str,
        amount: int,
        kind: str,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerMutation:
        """
        Increment the balance and append a positive entry, atomically.

        Returns:
            APPLIED, REPLAYED or ACCOUNT_NOT_FOUND
        """
        pass

    @abstractmethod
    def refund(
        self,
        account_id: str,
        reference_id: str,
        description: Optional[str] = None,
    ) -> LedgerMutation:
        """
        Credit back the consumption recorded under ``reference_id``.

        Returns:
            APPLIED, REPLAYED or NOT_FOUND (no such consumption)
        """
        pass

    @abstractmethod
    def open_account(
        self,
        account_id: str,
        email: Optional[str],
        starting_grant: int,
        reference_id: str,
    ) -> LedgerMutation:
        """
        Create the account and its zero balance if missing, then apply the
        starting grant under ``reference_id``.

        Returns:
            APPLIED or REPLAYED
        """
        pass

    @abstractmethod
    def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Ledger entries for an account, newest first."""
        pass

    def health_check(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            True if healthy, False otherwise
        """
        try:
            self.get_balance("00000000-0000-0000-0000-000000000000")
            return True
        except StoreError:
            return False
