"""Credit ledger: versioned balance commits, lazy trial expiry, priority deduction.

Every balance change goes through `apply_ledger_change`: load the user, expire a
stale trial pool, run the caller's validation and mutation in memory, then write
the whole balance back conditioned on the `ledger_version` that was loaded. A
concurrent commit makes the write miss and the change is re-run on fresh state,
so two deductions can never spend the same credits.
"""

from datetime import datetime
from typing import Any, Callable

from beanie import PydanticObjectId
from pydantic import BaseModel

from gomi_credits.core import clock
from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import (
    ConflictError,
    InsufficientCreditsError,
    InvalidArgumentError,
    NotFoundError,
    SystemUnavailableError,
)
from gomi_credits.core.logging import get_logger
from gomi_credits.models.credit_balance import DeductionBreakdown, PoolName
from gomi_credits.models.credit_ledger import CreditTransaction, TransactionType
from gomi_credits.models.user import User

log = get_logger(__name__)


class LedgerPosting(BaseModel):
    """What a mutation did, turned into a CreditTransaction once the commit lands."""
    type: TransactionType
    amount: int
    pool: PoolName
    reason: str
    feature_type: str | None = None
    breakdown: DeductionBreakdown | None = None
    reference_id: str | None = None


# Validates and mutates `user` in place; raises AppError to abort with no write.
LedgerMutation = Callable[[User, datetime], LedgerPosting | None]


async def load_user(user_id: PydanticObjectId) -> User:
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def _compare_and_swap(user: User, expected_version: int, now: datetime) -> bool:
    user.credits.recompute_total()
    result = await User.get_motor_collection().update_one(
        {"_id": user.id, "ledger_version": expected_version},
        {
            "$set": {
                "credits": user.credits.model_dump(),
                "antifraud": user.antifraud.model_dump(),
                "applied_keys": user.applied_keys,
                "ledger_version": expected_version + 1,
                "updated_at": now,
            }
        },
    )
    if result.modified_count != 1:
        return False
    user.ledger_version = expected_version + 1
    user.updated_at = now
    return True


async def _find_applied(user_id: PydanticObjectId, idempotency_key: str) -> CreditTransaction | None:
    return await CreditTransaction.find_one(
        CreditTransaction.user_id == user_id,
        CreditTransaction.idempotency_key == idempotency_key,
    )


async def apply_ledger_change(
    user_id: PydanticObjectId,
    mutate: LedgerMutation,
    idempotency_key: str | None = None,
) -> tuple[User, CreditTransaction | None]:
    """
    Run `mutate` as one atomic read-modify-write of the user's balance.
    Returns (user_after_commit, transaction_entry). Replaying an applied
    idempotency key returns the original entry without touching the balance.
    """
    settings = get_settings()
    for attempt in range(1, settings.ledger_commit_attempts + 1):
        user = await load_user(user_id)
        if idempotency_key and idempotency_key in user.applied_keys:
            log.info("ledger_replay", user_id=str(user_id), idempotency_key=idempotency_key)
            entry = await _find_applied(user_id, idempotency_key)
            if entry is None:
                raise ConflictError("Request with this idempotency key was already applied")
            return user, entry

        now = clock.utcnow()
        expected_version = user.ledger_version
        user.credits.recompute_total()
        before_expiry = user.credits.snapshot()
        expired = user.credits.expire_trial(now)
        before = user.credits.snapshot()

        posting = mutate(user, now)

        if idempotency_key:
            user.applied_keys = (user.applied_keys + [idempotency_key])[-settings.idempotency_keys_kept:]
        if await _compare_and_swap(user, expected_version, now):
            break
        log.info("ledger_commit_conflict", user_id=str(user_id), attempt=attempt)
    else:
        log.warning("ledger_commit_exhausted", user_id=str(user_id))
        raise SystemUnavailableError("Balance is being updated concurrently, retry")

    if expired:
        await CreditTransaction(
            user_id=user.id,
            type="DEDUCTION",
            amount=expired,
            pool="TRIAL",
            reason="trial_expired",
            balance_before=before_expiry,
            balance_after=before,
            created_at=now,
        ).insert()
        log.info("trial_expired", user_id=str(user.id), amount=expired)

    if posting is None:
        return user, None
    entry = CreditTransaction(
        user_id=user.id,
        type=posting.type,
        amount=posting.amount,
        pool=posting.pool,
        reason=posting.reason,
        feature_type=posting.feature_type,
        breakdown=posting.breakdown,
        balance_before=before,
        balance_after=user.credits.snapshot(),
        idempotency_key=idempotency_key,
        reference_id=posting.reference_id,
        created_at=now,
    )
    await entry.insert()
    return user, entry


def balance_view(user: User) -> dict[str, Any]:
    credits = user.credits
    return {
        "trial": credits.trial.amount,
        "monthly": credits.monthly.amount,
        "purchase": credits.purchase.amount,
        "total": credits.recompute_total(),
        "trial_expires_at": credits.trial.expires_at,
        "monthly_reset_at": credits.monthly.reset_at,
        "subscription_tier": credits.monthly.subscription_tier,
    }


async def get_balance(user_id: PydanticObjectId) -> dict[str, Any]:
    """Current pools with lazy expiry applied; the expiry is persisted when it applies."""
    user = await load_user(user_id)
    if user.credits.trial.amount > 0 and user.credits.trial.is_expired(clock.utcnow()):
        user, _ = await apply_ledger_change(user_id, lambda u, now: None)
    return balance_view(user)


async def deduct(
    user_id: PydanticObjectId,
    amount: int,
    reason: str,
    feature_type: str | None = None,
    idempotency_key: str | None = None,
) -> CreditTransaction:
    """Spend `amount` credits trial -> monthly -> purchase. All or nothing."""
    if amount <= 0:
        raise InvalidArgumentError("Deduction amount must be positive", details={"amount": amount})
    if not reason:
        raise InvalidArgumentError("Deduction reason is required")

    def _deduct(user: User, now: datetime) -> LedgerPosting:
        available = user.credits.recompute_total()
        if available < amount:
            raise InsufficientCreditsError(required=amount, available=available)
        breakdown = user.credits.consume(amount)
        return LedgerPosting(
            type="DEDUCTION",
            amount=amount,
            pool=breakdown.primary_pool,
            reason=reason,
            feature_type=feature_type,
            breakdown=breakdown,
        )

    try:
        user, entry = await apply_ledger_change(user_id, _deduct, idempotency_key=idempotency_key)
    except InsufficientCreditsError as e:
        log.info("credits_insufficient", user_id=str(user_id), **e.details)
        raise
    log.info(
        "credits_deducted",
        user_id=str(user_id),
        amount=amount,
        reason=reason,
        feature_type=feature_type,
        total_after=user.credits.total,
    )
    return entry


async def list_transactions(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[CreditTransaction]:
    """Newest first."""
    return (
        await CreditTransaction.find(CreditTransaction.user_id == user_id)
        .sort(-CreditTransaction.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


async def sweep_expired_trials(limit: int = 500) -> int:
    """Zero trial pools whose window passed. Analytics freshness only; reads expire lazily anyway."""
    now = clock.utcnow()
    stale = await User.find(
        User.credits.trial.amount > 0,
        User.credits.trial.expires_at <= now,
    ).limit(limit).to_list()
    swept = 0
    for user in stale:
        await apply_ledger_change(user.id, lambda u, now: None)
        swept += 1
    if swept:
        log.info("trial_sweep", swept=swept)
    return swept
