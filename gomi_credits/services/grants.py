"""Credit grants: first and second trial, ad-watch bonus, subscription allotment, purchases.

Each grant's precondition doubles as its idempotency guard: re-invoking a grant
that already happened fails cleanly instead of granting twice. Preconditions are
re-checked inside the versioned commit, so a concurrent duplicate loses the race.
"""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import PyMongoError

from gomi_credits.core import clock
from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import (
    AppError,
    InvalidArgumentError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from gomi_credits.core.logging import get_logger
from gomi_credits.models.credit_ledger import CreditTransaction
from gomi_credits.models.user import User
from gomi_credits.services import devices as devices_service
from gomi_credits.services import eligibility
from gomi_credits.services import ip_usage as ip_usage_service
from gomi_credits.services.credits import LedgerPosting, apply_ledger_change, load_user

log = get_logger(__name__)

PAID_TIERS = ("PRO", "ULTRA")


def _require_not_flagged(user: User, what: str) -> None:
    if user.antifraud.abuse_flagged:
        raise PermissionDeniedError(
            f"Account flagged, not eligible for {what}",
            details={"reason": "account_flagged"},
        )


# --- first trial ---------------------------------------------------------------


async def grant_first_trial(user_id: PydanticObjectId, device_id: str, ip: str) -> CreditTransaction:
    """Gate-checked 500-credit trial with a 14-day window; claims the device and counts the IP."""
    if not device_id or not ip:
        raise InvalidArgumentError("device_id and ip are required")
    settings = get_settings()
    user = await load_user(user_id)
    result = await eligibility.check_eligibility(user, device_id, ip, clock.utcnow())
    if not result.passed:
        log.info("trial_gate_denied", user_id=str(user_id), device_id=device_id, ip=ip, layer=result.layer, reason=result.reason)
        raise result.error()

    def _grant(u: User, now: datetime) -> LedgerPosting:
        account = eligibility.check_account_barrier(u)
        if not account.passed:
            raise account.error()
        abuse = eligibility.check_abuse_flag(u)
        if not abuse.passed:
            raise abuse.error()
        trial = u.credits.trial
        # Added on top: an ad bonus claimed earlier stays in the pool.
        trial.amount += settings.trial_first_grant
        trial.granted_at = now
        trial.expires_at = now + timedelta(days=settings.trial_expiry_days)
        trial.first_grant_claimed = True
        trial.second_grant_eligible_at = trial.expires_at
        trial.remaining_at_first_expiry = None
        u.antifraud.credit_status = "CLAIMED"
        u.antifraud.initial_device_id = device_id
        return LedgerPosting(type="GRANT", amount=settings.trial_first_grant, pool="TRIAL", reason="first_trial_grant")

    user, entry = await apply_ledger_change(user_id, _grant)
    log.info("trial_granted", user_id=str(user_id), grant="first", amount=entry.amount, device_id=device_id)

    # Registries are advisory and written only after the ledger commit; each one independently.
    try:
        await ip_usage_service.record_account_creation(ip, str(user_id), clock.utcnow())
    except PyMongoError:
        log.exception("registry_update_failed", registry="ip", user_id=str(user_id), ip=ip)
    try:
        await devices_service.mark_trial_claimed(device_id, str(user_id))
    except PyMongoError:
        log.exception("registry_update_failed", registry="device", user_id=str(user_id), device_id=device_id)
    return entry


# --- second trial --------------------------------------------------------------


def second_trial_amount(remaining_at_expiry: int) -> int:
    s = get_settings()
    if remaining_at_expiry >= s.trial_second_grant_threshold:
        return s.trial_second_grant_high
    return s.trial_second_grant_low


def _check_second_trial(user: User, now: datetime) -> int:
    """Raise if the second trial cannot be granted now; return its size otherwise."""
    credits = user.credits
    trial = credits.trial
    if credits.monthly.subscription_tier != "FREE":
        raise PreconditionFailedError("Second trial grant is only available on the FREE plan", details={"reason": "not_free_tier"})
    if not trial.first_grant_claimed:
        raise PreconditionFailedError("First trial grant must be claimed first", details={"reason": "first_grant_not_claimed"})
    if trial.second_grant_claimed:
        raise PreconditionFailedError("Second trial grant already claimed", details={"reason": "already_claimed"})
    _require_not_flagged(user, "the second trial grant")
    if trial.second_grant_eligible_at is None or now < trial.second_grant_eligible_at:
        raise PreconditionFailedError(
            "Second trial grant is available once the first trial has expired",
            details={"reason": "first_trial_active", "eligible_at": trial.second_grant_eligible_at},
        )
    return second_trial_amount(trial.remaining_at_first_expiry or 0)


async def grant_second_trial(user_id: PydanticObjectId) -> CreditTransaction:
    """300 credits if at least 300 were left when the first trial expired, else 100."""
    settings = get_settings()

    def _grant(u: User, now: datetime) -> LedgerPosting:
        amount = _check_second_trial(u, now)
        trial = u.credits.trial
        remaining = trial.remaining_at_first_expiry or 0
        trial.amount += amount
        trial.granted_at = now
        trial.expires_at = now + timedelta(days=settings.trial_expiry_days)
        trial.second_grant_claimed = True
        u.antifraud.credit_status = "SECOND_GRANT_CLAIMED"
        return LedgerPosting(
            type="GRANT",
            amount=amount,
            pool="TRIAL",
            reason=f"second_trial_grant (had {remaining} remaining)",
        )

    user, entry = await apply_ledger_change(user_id, _grant)
    log.info("trial_granted", user_id=str(user_id), grant="second", amount=entry.amount)
    return entry


# --- ad watch bonus ------------------------------------------------------------


def _check_ad_watch(user: User) -> None:
    s = get_settings()
    credits = user.credits
    if credits.monthly.subscription_tier != "FREE":
        raise PreconditionFailedError("Ad watch bonus is only available on the FREE plan", details={"reason": "not_free_tier"})
    if credits.ad_watch.claimed:
        raise PreconditionFailedError("Ad watch bonus already claimed", details={"reason": "already_claimed"})
    _require_not_flagged(user, "the ad watch bonus")
    if credits.recompute_total() >= s.ad_watch_threshold:
        raise PreconditionFailedError(
            f"Ad watch bonus is only available with fewer than {s.ad_watch_threshold} credits",
            details={"reason": "balance_too_high", "total": credits.total},
        )


async def grant_ad_watch_bonus(user_id: PydanticObjectId, videos_watched: int) -> CreditTransaction:
    """Flat +50 trial credits after exactly four rewarded videos, once per account."""
    settings = get_settings()
    if videos_watched != settings.ad_watch_video_count:
        raise InvalidArgumentError(
            f"Must watch {settings.ad_watch_video_count} videos",
            details={"videos_watched": videos_watched},
        )

    def _grant(u: User, now: datetime) -> LedgerPosting:
        _check_ad_watch(u)
        trial = u.credits.trial
        trial.amount += settings.ad_watch_bonus
        if not trial.has_live_window(now):
            # No running trial window to ride on; give the bonus one of its own.
            trial.expires_at = now + timedelta(days=settings.trial_expiry_days)
        u.credits.ad_watch.claimed = True
        u.credits.ad_watch.claimed_at = now
        return LedgerPosting(type="GRANT", amount=settings.ad_watch_bonus, pool="TRIAL", reason="ad_watch_bonus")

    user, entry = await apply_ledger_change(user_id, _grant)
    log.info("ad_watch_bonus_granted", user_id=str(user_id), amount=entry.amount)
    return entry


# --- subscription and purchases ------------------------------------------------


async def grant_monthly_credits(
    user_id: PydanticObjectId,
    tier: str,
    idempotency_key: str | None = None,
    reference_id: str | None = None,
) -> CreditTransaction:
    """Replace the monthly pool with the tier's allotment and start a new 30-day period."""
    if tier not in PAID_TIERS:
        raise InvalidArgumentError(f"No monthly credits for tier {tier}", details={"tier": tier})
    settings = get_settings()
    allotment = settings.monthly_allotment(tier)

    def _grant(u: User, now: datetime) -> LedgerPosting:
        monthly = u.credits.monthly
        monthly.amount = allotment
        monthly.reset_at = now + timedelta(days=settings.monthly_period_days)
        monthly.subscription_tier = tier
        return LedgerPosting(
            type="GRANT",
            amount=allotment,
            pool="MONTHLY",
            reason=f"monthly_grant ({tier})",
            reference_id=reference_id,
        )

    user, entry = await apply_ledger_change(user_id, _grant, idempotency_key=idempotency_key)
    log.info("monthly_credits_granted", user_id=str(user_id), tier=tier, amount=user.credits.monthly.amount)
    return entry


async def grant_purchase_credits(
    user_id: PydanticObjectId,
    amount: int,
    reason: str = "purchase",
    idempotency_key: str | None = None,
    reference_id: str | None = None,
) -> CreditTransaction:
    """Add permanently owned credits; they never expire and are spent last."""
    if amount <= 0:
        raise InvalidArgumentError("Purchase amount must be positive", details={"amount": amount})

    def _grant(u: User, now: datetime) -> LedgerPosting:
        u.credits.purchase.amount += amount
        u.credits.purchase.total_purchased += amount
        return LedgerPosting(type="GRANT", amount=amount, pool="PURCHASE", reason=reason, reference_id=reference_id)

    user, entry = await apply_ledger_change(user_id, _grant, idempotency_key=idempotency_key)
    log.info("purchase_credits_granted", user_id=str(user_id), amount=amount, purchase_total=user.credits.purchase.amount)
    return entry


# --- previews ------------------------------------------------------------------


async def second_trial_eligibility(user_id: PydanticObjectId) -> dict[str, Any]:
    user = await load_user(user_id)
    now = clock.utcnow()
    user.credits.expire_trial(now)
    try:
        amount = _check_second_trial(user, now)
    except AppError as e:
        return {"eligible": False, "reason": e.message, "code": e.code}
    return {"eligible": True, "grant_amount": amount}


async def ad_watch_eligibility(user_id: PydanticObjectId) -> dict[str, Any]:
    user = await load_user(user_id)
    user.credits.expire_trial(clock.utcnow())
    try:
        _check_ad_watch(user)
    except AppError as e:
        return {"eligible": False, "reason": e.message, "code": e.code}
    return {"eligible": True, "videos_required": get_settings().ad_watch_video_count}
