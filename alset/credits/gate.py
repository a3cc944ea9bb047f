"""
Credit ledger gate for priced search tiers.

The gate answers two questions for a route handler: "may this account run
a search of this tier?" (``validate``, advisory) and "charge it, exactly
once" (``consume``, authoritative). The charge itself is a single atomic
store call; the gate only resolves the tier price, picks the reference id,
retries transient store failures with that same reference id, and turns
store outcomes into typed results.

Every business outcome, transient store failures included, comes back as a
result value. Errors the store classifies as permanent (a rejected query,
a malformed account id, a constraint violation that is not a duplicate
reference) are programming or deployment faults; they propagate unchanged
to the application's error handler, which answers 500.
"""
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar, Union

import structlog

from alset.core.config import (
    REFERENCE_TABLE_SEARCH_HISTORY,
    SEARCH_TIER_POLICY,
    SIGNUP_GRANT_REFERENCE,
    SearchTier,
    TransactionKind,
)
from alset.core.monitoring import (
    capture_credit_context,
    increment_credit_operation,
    increment_credits_consumed,
)
from alset.credits.results import (
    CreditConsumption,
    CreditFailure,
    CreditGrant,
    CreditValidation,
)
from alset.credits.store import (
    ICreditStore,
    LedgerMutation,
    MutationStatus,
    TRANSIENT_STORE_ERRORS,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

GRANTABLE_KINDS = (TransactionKind.PURCHASE, TransactionKind.GRANT)


def resolve_tier(tier: Union[SearchTier, str, None]) -> Optional[SearchTier]:
    """Map a tier name to a SearchTier, or None when it is not recognised."""
    if isinstance(tier, SearchTier):
        return tier
    if not isinstance(tier, str):
        return None
    try:
        return SearchTier(tier.strip().lower())
    except ValueError:
        return None


def tier_cost(tier: SearchTier) -> int:
    return SEARCH_TIER_POLICY[tier]["credits_required"]


class CreditLedgerGate:
    """
    Gate access to priced search tiers and record their cost exactly once.

    Args:
        store: durable credit store performing the atomic mutations
        max_attempts: total attempts per store call on transient errors
        retry_delays: seconds to wait before each retry; the last value is
            reused when there are more retries than delays
        signup_grant: credits granted by ``open_account`` by default
        sleep: sleep function, replaceable in tests
    """

    def __init__(
        self,
        store: ICreditStore,
        max_attempts: int = 3,
        retry_delays: Sequence[float] = (0.1, 0.5),
        signup_grant: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self.retry_delays = list(retry_delays)
        self.signup_grant = signup_grant
        self._sleep = sleep

    def _call_store(self, operation: str, call: Callable[[], T]) -> T:
        """
        Run one store call, retrying transient failures a bounded number of times.

        Only ``TRANSIENT_STORE_ERRORS`` are retried; any other exception is
        raised on the first attempt.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return call()
            except TRANSIENT_STORE_ERRORS as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        "Credit store unavailable",
                        store=self.store.name,
                        operation=operation,
                        attempts=attempt,
                        error=str(e),
                    )
                    raise
                delay = 0.0
                if self.retry_delays:
                    delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]
                logger.warning(
                    "Transient credit store error, retrying",
                    store=self.store.name,
                    operation=operation,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
                if delay > 0:
                    self._sleep(delay)

    # Tier policy

    def get_tier_info(self, tier: Union[SearchTier, str]) -> Optional[Dict[str, Any]]:
        search_tier = resolve_tier(tier)
        if search_tier is None:
            return None
        policy = SEARCH_TIER_POLICY[search_tier]
        return {
            "tier": search_tier.value,
            "credits_required": policy["credits_required"],
            "features": list(policy["features"]),
            "description": policy["description"],
        }

    def list_tiers(self) -> List[Dict[str, Any]]:
        return [self.get_tier_info(tier) for tier in SearchTier]

    # Gate operations

    def validate(self, account_id: Optional[str], tier: Union[SearchTier, str]) -> CreditValidation:
        """
        Advisory pre-check of whether ``account_id`` can afford ``tier``.

        Reads the balance without locking or reserving anything; the
        authoritative check happens inside ``consume``.
        """
        search_tier = resolve_tier(tier)
        if search_tier is None:
            increment_credit_operation("validate", CreditFailure.INVALID_TIER.value)
            return CreditValidation(
                can_proceed=False,
                tier=str(tier),
                credits_required=0,
                reason=CreditFailure.INVALID_TIER,
                message=f"Unknown search tier: {tier}",
            )

        cost = tier_cost(search_tier)
        if cost == 0:
            increment_credit_operation("validate", "allowed")
            return CreditValidation(
                can_proceed=True,
                tier=search_tier.value,
                credits_required=0,
                message=f"{search_tier.value.title()} search is free",
            )

        if not account_id:
            logger.info("Anonymous caller requested a priced tier", tier=search_tier.value)
            increment_credit_operation("validate", CreditFailure.AUTHENTICATION_REQUIRED.value)
            return CreditValidation(
                can_proceed=False,
                tier=search_tier.value,
                credits_required=cost,
                reason=CreditFailure.AUTHENTICATION_REQUIRED,
                message=f"Authentication required for {search_tier.value} search",
            )

        try:
            balance = self._call_store("get_balance", lambda: self.store.get_balance(account_id))
        except TRANSIENT_STORE_ERRORS:
            increment_credit_operation("validate", CreditFailure.TRANSIENT_STORE_ERROR.value)
            return CreditValidation(
                can_proceed=False,
                tier=search_tier.value,
                credits_required=cost,
                reason=CreditFailure.TRANSIENT_STORE_ERROR,
                message="Credit balance is temporarily unavailable, please retry",
            )

        available = balance or 0
        if available < cost:
            logger.info("Insufficient credits for search", account_id=account_id,
                        tier=search_tier.value, available=available, required=cost)
            increment_credit_operation("validate", CreditFailure.INSUFFICIENT_CREDITS.value)
            return CreditValidation(
                can_proceed=False,
                tier=search_tier.value,
                credits_required=cost,
                available_credits=available,
                reason=CreditFailure.INSUFFICIENT_CREDITS,
                message=f"Insufficient credits. Required: {cost}, Available: {available}",
            )

        increment_credit_operation("validate", "allowed")
        return CreditValidation(
            can_proceed=True,
            tier=search_tier.value,
            credits_required=cost,
            available_credits=available,
            message=f"{search_tier.value.title()} search available ({cost} credit required)",
        )

    def has_sufficient_credits(self, account_id: Optional[str]) -> bool:
        """Whether the account can currently afford a smart search."""
        return self.validate(account_id, SearchTier.SMART).can_proceed

    def consume(
        self,
        account_id: Optional[str],
        tier: Union[SearchTier, str],
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        reference_table: Optional[str] = REFERENCE_TABLE_SEARCH_HISTORY,
    ) -> CreditConsumption:
        """
        Charge ``account_id`` the price of ``tier`` exactly once per ``reference_id``.

        Call this when the priced action actually runs. A retry with the same
        reference id after a lost response is reported as ``replayed`` and
        does not deduct again. When no reference id is given one is
        generated and returned so the caller can retry or refund it.
        """
        search_tier = resolve_tier(tier)
        if search_tier is None:
            increment_credit_operation("consume", CreditFailure.INVALID_TIER.value)
            return CreditConsumption(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.INVALID_TIER,
                message=f"Unknown search tier: {tier}",
            )

        cost = tier_cost(search_tier)
        if cost == 0:
            increment_credit_operation("consume", "free")
            return CreditConsumption(
                success=True,
                reference_id=reference_id,
                message=f"{search_tier.value.title()} search is free",
            )

        if not account_id:
            logger.info("Anonymous caller attempted a priced search", tier=search_tier.value)
            increment_credit_operation("consume", CreditFailure.AUTHENTICATION_REQUIRED.value)
            return CreditConsumption(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.AUTHENTICATION_REQUIRED,
                message=f"Authentication required for {search_tier.value} search",
            )

        reference_id = reference_id or str(uuid.uuid4())
        capture_credit_context(account_id, reference_id, search_tier.value)
        description = description or f"{search_tier.value.title()} search ({cost} credit)"

        try:
            mutation = self._call_store("consume", lambda: self.store.consume(
                account_id,
                cost,
                reference_id,
                description=description,
                reference_table=reference_table,
                metadata=metadata,
            ))
        except TRANSIENT_STORE_ERRORS:
            increment_credit_operation("consume", CreditFailure.TRANSIENT_STORE_ERROR.value)
            return CreditConsumption(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.TRANSIENT_STORE_ERROR,
                message="Credit store is temporarily unavailable, retry with the same reference id",
            )

        if mutation.status == MutationStatus.APPLIED:
            logger.info("Credits consumed", account_id=account_id, tier=search_tier.value,
                        cost=cost, remaining=mutation.balance, reference_id=reference_id)
            increment_credit_operation("consume", "success")
            increment_credits_consumed(search_tier.value, cost)
            return CreditConsumption(
                success=True,
                credits_consumed=cost,
                remaining_credits=mutation.balance,
                reference_id=reference_id,
                transaction_id=mutation.transaction_id,
                message=f"{cost} credit consumed",
            )

        if mutation.status == MutationStatus.REPLAYED:
            logger.info("Consumption already recorded, not charging again",
                        account_id=account_id, reference_id=reference_id)
            increment_credit_operation("consume", "replayed")
            return CreditConsumption(
                success=True,
                credits_consumed=abs(mutation.amount),
                remaining_credits=mutation.balance,
                reference_id=reference_id,
                transaction_id=mutation.transaction_id,
                replayed=True,
                message="Already charged for this reference",
            )

        if mutation.status == MutationStatus.REFUNDED:
            logger.info("Consumption reference was refunded, not reusable",
                        account_id=account_id, reference_id=reference_id)
            increment_credit_operation("consume", CreditFailure.ALREADY_REFUNDED.value)
            return CreditConsumption(
                success=False,
                remaining_credits=mutation.balance,
                reference_id=reference_id,
                transaction_id=mutation.transaction_id,
                reason=CreditFailure.ALREADY_REFUNDED,
                message="This search was refunded; start a new search to be charged again",
            )

        # INSUFFICIENT, or no balance row at all (treated as a zero balance)
        logger.info("Credit consumption rejected", account_id=account_id, tier=search_tier.value,
                    required=cost, available=mutation.balance, status=mutation.status.value)
        increment_credit_operation("consume", CreditFailure.INSUFFICIENT_CREDITS.value)
        return CreditConsumption(
            success=False,
            remaining_credits=mutation.balance,
            reference_id=reference_id,
            reason=CreditFailure.INSUFFICIENT_CREDITS,
            message=f"Insufficient credits. Required: {cost}, Available: {mutation.balance}",
        )

    def grant(
        self,
        account_id: str,
        amount: int,
        kind: Union[TransactionKind, str],
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditGrant:
        """Add ``amount`` credits for a purchase or a free grant."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            increment_credit_operation("grant", CreditFailure.INVALID_AMOUNT.value)
            return CreditGrant(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.INVALID_AMOUNT,
                message=f"Grant amount must be a positive integer, got {amount!r}",
            )

        try:
            kind = TransactionKind(kind)
        except ValueError:
            kind = None
        if kind not in GRANTABLE_KINDS:
            increment_credit_operation("grant", CreditFailure.INVALID_KIND.value)
            return CreditGrant(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.INVALID_KIND,
                message="Grant kind must be one of: " + ", ".join(k.value for k in GRANTABLE_KINDS),
            )

        if not account_id:
            increment_credit_operation("grant", CreditFailure.ACCOUNT_NOT_FOUND.value)
            return CreditGrant(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.ACCOUNT_NOT_FOUND,
                message="An account is required for a grant",
            )

        reference_id = reference_id or str(uuid.uuid4())
        description = description or f"{kind.value.title()}: {amount} credits"

        try:
            mutation = self._call_store("grant", lambda: self.store.grant(
                account_id,
                amount,
                kind.value,
                reference_id=reference_id,
                description=description,
                metadata=metadata,
            ))
        except TRANSIENT_STORE_ERRORS:
            increment_credit_operation("grant", CreditFailure.TRANSIENT_STORE_ERROR.value)
            return CreditGrant(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.TRANSIENT_STORE_ERROR,
                message="Credit store is temporarily unavailable, retry with the same reference id",
            )

        return self._grant_result("grant", account_id, reference_id, mutation)

    def refund(self, account_id: str, reference_id: str, description: Optional[str] = None) -> CreditGrant:
        """
        Credit back the consumption recorded under ``reference_id``.

        Used when the paid action fails after the charge went through.
        Refunding twice is a replay, not a second credit.
        """
        if not account_id or not reference_id:
            increment_credit_operation("refund", CreditFailure.NOT_FOUND.value)
            return CreditGrant(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.NOT_FOUND,
                message="Refund needs both an account and the consumption reference",
            )

        description = description or "Refund for failed search"
        try:
            mutation = self._call_store("refund", lambda: self.store.refund(
                account_id, reference_id, description=description
            ))
        except TRANSIENT_STORE_ERRORS:
            increment_credit_operation("refund", CreditFailure.TRANSIENT_STORE_ERROR.value)
            return CreditGrant(
                success=False,
                reference_id=reference_id,
                reason=CreditFailure.TRANSIENT_STORE_ERROR,
                message="Credit store is temporarily unavailable, retry the refund",
            )

        return self._grant_result("refund", account_id, reference_id, mutation)

    def open_account(
        self,
        account_id: str,
        email: Optional[str] = None,
        starting_grant: Optional[int] = None,
    ) -> CreditGrant:
        """Create the account's balance if missing and apply the one-off signup grant."""
        if starting_grant is None:
            starting_grant = self.signup_grant
        if isinstance(starting_grant, bool) or not isinstance(starting_grant, int) or starting_grant < 0:
            increment_credit_operation("open_account", CreditFailure.INVALID_AMOUNT.value)
            return CreditGrant(
                success=False,
                reference_id=SIGNUP_GRANT_REFERENCE,
                reason=CreditFailure.INVALID_AMOUNT,
                message=f"Starting grant must be a non-negative integer, got {starting_grant!r}",
            )

        try:
            mutation = self._call_store("open_account", lambda: self.store.open_account(
                account_id, email, starting_grant, SIGNUP_GRANT_REFERENCE
            ))
        except TRANSIENT_STORE_ERRORS:
            increment_credit_operation("open_account", CreditFailure.TRANSIENT_STORE_ERROR.value)
            return CreditGrant(
                success=False,
                reference_id=SIGNUP_GRANT_REFERENCE,
                reason=CreditFailure.TRANSIENT_STORE_ERROR,
                message="Credit store is temporarily unavailable, retry account setup",
            )

        return self._grant_result("open_account", account_id, SIGNUP_GRANT_REFERENCE, mutation)

    def _grant_result(self, operation: str, account_id: str, reference_id: str,
                      mutation: LedgerMutation) -> CreditGrant:
        if mutation.status == MutationStatus.APPLIED:
            logger.info("Credits added", operation=operation, account_id=account_id,
                        amount=mutation.amount, balance=mutation.balance, reference_id=reference_id)
            increment_credit_operation(operation, "success")
            return CreditGrant(
                success=True,
                credits_added=mutation.amount,
                new_balance=mutation.balance,
                reference_id=reference_id,
                transaction_id=mutation.transaction_id,
                message=f"{mutation.amount} credits added",
            )

        if mutation.status == MutationStatus.REPLAYED:
            increment_credit_operation(operation, "replayed")
            return CreditGrant(
                success=True,
                credits_added=mutation.amount,
                new_balance=mutation.balance,
                reference_id=reference_id,
                transaction_id=mutation.transaction_id,
                replayed=True,
                message="Already applied for this reference",
            )

        if mutation.status == MutationStatus.NOT_FOUND:
            logger.info("Nothing to refund", account_id=account_id, reference_id=reference_id)
            increment_credit_operation(operation, CreditFailure.NOT_FOUND.value)
            return CreditGrant(
                success=False,
                new_balance=mutation.balance,
                reference_id=reference_id,
                reason=CreditFailure.NOT_FOUND,
                message=f"No consumption recorded for reference {reference_id}",
            )

        increment_credit_operation(operation, CreditFailure.ACCOUNT_NOT_FOUND.value)
        return CreditGrant(
            success=False,
            reference_id=reference_id,
            reason=CreditFailure.ACCOUNT_NOT_FOUND,
            message=f"No credit balance for account {account_id}",
        )
