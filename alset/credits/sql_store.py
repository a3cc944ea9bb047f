"""
SQL credit store on SQLModel/SQLAlchemy.

Each mutation runs in one database transaction:

    UPDATE credit_balances SET amount = amount - :cost
     WHERE account_id = :id AND amount >= :cost
    RETURNING amount

followed by the ledger INSERT. The UPDATE takes the row lock, so concurrent
consumers for the same account are serialized by the database, and the
unique (account_id, reference_id, kind) constraint turns a concurrent retry
of the same charge into an IntegrityError that is reported as a replay.
"""
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlmodel import Session, col, select

from alset.core.config import TransactionKind
from alset.core.monitoring import CreditStoreMetricsContext
from alset.credits.store import (
    ICreditStore,
    LedgerMutation,
    MutationStatus,
    StoreConnectionError,
    StoreError,
    StoreTimeoutError,
)
from alset.db.models import Account, CreditBalance, CreditTransaction
from alset.db.models.account import utcnow

logger = structlog.get_logger(__name__)

# SQLSTATE for statement_timeout / query cancellation
_QUERY_CANCELED = "57014"


def _sqlstate(exc: OperationalError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def entry_to_dict(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "account_id": entry.account_id,
        "amount": entry.amount,
        "kind": entry.kind,
        "description": entry.description,
        "reference_id": entry.reference_id,
        "reference_table": entry.reference_table,
        "metadata": entry.extra_metadata or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


class SQLCreditStore(ICreditStore):
    """Credit store backed by Postgres (or SQLite in tests) through SQLModel."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def name(self) -> str:
        return "sql"

    @contextmanager
    def _transaction(self, operation: str):
        try:
            with Session(self.engine) as session:
                with session.begin():
                    yield session
        except PoolTimeoutError as e:
            raise StoreTimeoutError(str(e), self.name, operation) from e
        except OperationalError as e:
            if _sqlstate(e) == _QUERY_CANCELED:
                raise StoreTimeoutError(str(e.orig), self.name, operation) from e
            raise StoreConnectionError(str(e.orig), self.name, operation) from e

    # Helpers, all run inside an open transaction

    @staticmethod
    def _read_balance(session: Session, account_id: str) -> Optional[int]:
        row = session.get(CreditBalance, account_id)
        return None if row is None else int(row.amount)

    @staticmethod
    def _find_entry(session: Session, account_id: str, reference_id: Optional[str], kind: str) -> Optional[CreditTransaction]:
        if reference_id is None:
            return None
        statement = select(CreditTransaction).where(
            CreditTransaction.account_id == account_id,
            CreditTransaction.reference_id == reference_id,
            CreditTransaction.kind == kind,
        )
        return session.exec(statement).first()

    @staticmethod
    def _apply_delta(session: Session, account_id: str, delta: int, floor: Optional[int] = None) -> Optional[int]:
        """Relative balance update; returns the new balance or None when no row matched."""
        statement = (
            update(CreditBalance)
            .where(col(CreditBalance.account_id) == account_id)
            .values(amount=col(CreditBalance.amount) + delta, updated_at=utcnow())
            .returning(col(CreditBalance.amount))
        )
        if floor is not None:
            statement = statement.where(col(CreditBalance.amount) >= floor)
        row = session.exec(statement).first()
        return None if row is None else int(row[0])

    @staticmethod
    def _append(
        session: Session,
        account_id: str,
        amount: int,
        kind: str,
        reference_id: Optional[str],
        description: Optional[str],
        reference_table: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        entry = CreditTransaction(
            account_id=account_id,
            amount=amount,
            kind=kind,
            reference_id=reference_id,
            reference_table=reference_table,
            description=description,
            extra_metadata=metadata or {},
        )
        session.add(entry)
        session.flush()
        return entry

    def _existing_charge(self, session: Session, account_id: str, reference_id: str,
                         existing: CreditTransaction) -> LedgerMutation:
        refunded = self._find_entry(session, account_id, reference_id, TransactionKind.REFUND.value)
        return LedgerMutation(
            status=MutationStatus.REFUNDED if refunded else MutationStatus.REPLAYED,
            balance=self._read_balance(session, account_id) or 0,
            amount=existing.amount,
            transaction_id=existing.id,
        )

    def _replay(self, account_id: str, reference_id: str, kind: str, operation: str, error: IntegrityError) -> LedgerMutation:
        with self._transaction(operation) as session:
            existing = self._find_entry(session, account_id, reference_id, kind)
            if existing is None:
                raise error
            logger.info("Concurrent duplicate ledger entry replayed",
                        account_id=account_id, reference_id=reference_id, kind=kind)
            return LedgerMutation(
                status=MutationStatus.REPLAYED,
                balance=self._read_balance(session, account_id) or 0,
                amount=existing.amount,
                transaction_id=existing.id,
            )

    # ICreditStore

    def get_balance(self, account_id: str) -> Optional[int]:
        with CreditStoreMetricsContext(self.name, "get_balance"):
            with self._transaction("get_balance") as session:
                return self._read_balance(session, account_id)

    def consume(
        self,
        account_id: str,
        cost: int,
        reference_id: str,
        description: Optional[str] = None,
        reference_table: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerMutation:
        kind = TransactionKind.CONSUMPTION.value
        with CreditStoreMetricsContext(self.name, "consume"):
            try:
                with self._transaction("consume") as session:
                    existing = self._find_entry(session, account_id, reference_id, kind)
                    if existing is not None:
                        return self._existing_charge(session, account_id, reference_id, existing)

                    balance = self._apply_delta(session, account_id, -cost, floor=cost)
                    if balance is None:
                        # The guarded update waits on a concurrent charge; if that
                        # charge carried this reference it is visible now.
                        existing = self._find_entry(session, account_id, reference_id, kind)
                        if existing is not None:
                            return self._existing_charge(session, account_id, reference_id, existing)
                        current = self._read_balance(session, account_id)
                        if current is None:
                            return LedgerMutation(status=MutationStatus.ACCOUNT_NOT_FOUND)
                        return LedgerMutation(status=MutationStatus.INSUFFICIENT, balance=current)

                    entry = self._append(session, account_id, -cost, kind, reference_id,
                                         description, reference_table, metadata)
                    return LedgerMutation(
                        status=MutationStatus.APPLIED,
                        balance=balance,
                        amount=-cost,
                        transaction_id=entry.id,
                    )
            except IntegrityError as e:
                return self._replay(account_id, reference_id, kind, "consume", e)

    def grant(
        self,
        account_id: str,
        amount: int,
        kind: str,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LedgerMutation:
        with CreditStoreMetricsContext(self.name, "grant"):
            try:
                with self._transaction("grant") as session:
                    existing = self._find_entry(session, account_id, reference_id, kind)
                    if existing is not None:
                        return LedgerMutation(
                            status=MutationStatus.REPLAYED,
                            balance=self._read_balance(session, account_id) or 0,
                            amount=existing.amount,
                            transaction_id=existing.id,
                        )

                    balance = self._apply_delta(session, account_id, amount)
                    if balance is None:
                        return LedgerMutation(status=MutationStatus.ACCOUNT_NOT_FOUND)

                    entry = self._append(session, account_id, amount, kind, reference_id,
                                         description, metadata=metadata)
                    return LedgerMutation(
                        status=MutationStatus.APPLIED,
                        balance=balance,
                        amount=amount,
                        transaction_id=entry.id,
                    )
            except IntegrityError as e:
                return self._replay(account_id, reference_id, kind, "grant", e)

    def refund(
        self,
        account_id: str,
        reference_id: str,
        description: Optional[str] = None,
    ) -> LedgerMutation:
        kind = TransactionKind.REFUND.value
        with CreditStoreMetricsContext(self.name, "refund"):
            try:
                with self._transaction("refund") as session:
                    existing = self._find_entry(session, account_id, reference_id, kind)
                    if existing is not None:
                        return LedgerMutation(
                            status=MutationStatus.REPLAYED,
                            balance=self._read_balance(session, account_id) or 0,
                            amount=existing.amount,
                            transaction_id=existing.id,
                        )

                    charge = self._find_entry(session, account_id, reference_id,
                                              TransactionKind.CONSUMPTION.value)
                    if charge is None:
                        return LedgerMutation(
                            status=MutationStatus.NOT_FOUND,
                            balance=self._read_balance(session, account_id) or 0,
                        )

                    amount = abs(charge.amount)
                    balance = self._apply_delta(session, account_id, amount)
                    entry = self._append(session, account_id, amount, kind, reference_id,
                                         description, charge.reference_table)
                    return LedgerMutation(
                        status=MutationStatus.APPLIED,
                        balance=balance,
                        amount=amount,
                        transaction_id=entry.id,
                    )
            except IntegrityError as e:
                return self._replay(account_id, reference_id, kind, "refund", e)

    def _open_account(self, account_id: str, email: Optional[str], starting_grant: int, reference_id: str) -> LedgerMutation:
        kind = TransactionKind.GRANT.value
        with self._transaction("open_account") as session:
            if session.get(Account, account_id) is None:
                session.add(Account(id=account_id, email=email))
                session.flush()
            if session.get(CreditBalance, account_id) is None:
                session.add(CreditBalance(account_id=account_id, amount=0))
                session.flush()

            existing = self._find_entry(session, account_id, reference_id, kind)
            if existing is not None:
                return LedgerMutation(
                    status=MutationStatus.REPLAYED,
                    balance=self._read_balance(session, account_id) or 0,
                    amount=existing.amount,
                    transaction_id=existing.id,
                )

            if starting_grant <= 0:
                return LedgerMutation(status=MutationStatus.APPLIED,
                                      balance=self._read_balance(session, account_id) or 0)

            balance = self._apply_delta(session, account_id, starting_grant)
            entry = self._append(session, account_id, starting_grant, kind, reference_id,
                                 "Signup credit grant")
            return LedgerMutation(
                status=MutationStatus.APPLIED,
                balance=balance,
                amount=starting_grant,
                transaction_id=entry.id,
            )

    def open_account(
        self,
        account_id: str,
        email: Optional[str],
        starting_grant: int,
        reference_id: str,
    ) -> LedgerMutation:
        with CreditStoreMetricsContext(self.name, "open_account"):
            try:
                return self._open_account(account_id, email, starting_grant, reference_id)
            except IntegrityError:
                # A concurrent bootstrap created the rows first; run again against them.
                pass
            try:
                return self._open_account(account_id, email, starting_grant, reference_id)
            except IntegrityError as e:
                return self._replay(account_id, reference_id, TransactionKind.GRANT.value, "open_account", e)

    def list_transactions(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        kind: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with CreditStoreMetricsContext(self.name, "list_transactions"):
            with self._transaction("list_transactions") as session:
                statement = select(CreditTransaction).where(CreditTransaction.account_id == account_id)
                if kind is not None:
                    statement = statement.where(CreditTransaction.kind == kind)
                statement = (
                    statement.order_by(col(CreditTransaction.created_at).desc(), col(CreditTransaction.id))
                    .offset(offset)
                    .limit(limit)
                )
                return [entry_to_dict(entry) for entry in session.exec(statement).all()]

    def health_check(self) -> bool:
        try:
            with self._transaction("health_check") as session:
                session.exec(select(CreditBalance).limit(1)).first()
            return True
        except StoreError as e:
            logger.error("SQL credit store health check failed", error=str(e))
            return False
