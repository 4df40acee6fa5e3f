from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from gomi_credits.core.pagination import Page, paginate
from gomi_credits.core.security import normalize_idempotency_key
from gomi_credits.deps import get_client_ip, get_current_user
from gomi_credits.models.credit_ledger import CreditTransaction
from gomi_credits.models.user import User
from gomi_credits.services import antifraud as antifraud_service
from gomi_credits.services import credits as credits_service
from gomi_credits.services import eligibility
from gomi_credits.services import grants as grants_service

router = APIRouter()


class DeductRequest(BaseModel):
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=200)
    feature_type: str | None = None


class TrialRequest(BaseModel):
    device_id: str = Field(..., min_length=1)


class AdWatchRequest(BaseModel):
    videos_watched: int


def _transaction_out(t: CreditTransaction) -> dict:
    return {
        "id": str(t.id),
        "type": t.type,
        "amount": t.amount,
        "pool": t.pool,
        "reason": t.reason,
        "feature_type": t.feature_type,
        "breakdown": t.breakdown.model_dump() if t.breakdown else None,
        "balance_before": t.balance_before.model_dump(),
        "balance_after": t.balance_after.model_dump(),
        "created_at": t.created_at.isoformat(),
    }


@router.get("/balance")
async def credits_balance(user: User = Depends(get_current_user)):
    """Return current pools and total, with trial expiry applied."""
    return {"balance": await credits_service.get_balance(user.id)}


@router.get("/transactions", response_model=Page[dict])
async def credits_transactions(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Ledger entries for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    entries = await credits_service.list_transactions(user.id, limit=limit, offset=offset)
    return Page(items=[_transaction_out(e) for e in entries], limit=limit, offset=offset)


@router.post("/deduct")
async def credits_deduct(
    body: DeductRequest,
    user: User = Depends(get_current_user),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Spend credits for a feature. 402 when the balance does not cover the amount."""
    entry = await credits_service.deduct(
        user.id,
        body.amount,
        body.reason,
        feature_type=body.feature_type,
        idempotency_key=normalize_idempotency_key(idempotency_key),
    )
    return {
        "transaction": _transaction_out(entry),
        "balance": entry.balance_after.model_dump(),
    }


@router.get("/trial/eligibility")
async def trial_eligibility(
    request: Request,
    device_id: str = Query(..., min_length=1),
    user: User = Depends(get_current_user),
):
    result = await eligibility.check_eligibility_for_user(user.id, device_id, get_client_ip(request))
    return result.model_dump()


@router.post("/trial")
async def trial_claim(request: Request, body: TrialRequest, user: User = Depends(get_current_user)):
    """Claim the first trial grant. Runs the four-layer gate."""
    entry = await grants_service.grant_first_trial(user.id, body.device_id, get_client_ip(request))
    return {"transaction": _transaction_out(entry), "balance": entry.balance_after.model_dump()}


@router.get("/trial/second/eligibility")
async def second_trial_eligibility(user: User = Depends(get_current_user)):
    return await grants_service.second_trial_eligibility(user.id)


@router.post("/trial/second")
async def second_trial_claim(user: User = Depends(get_current_user)):
    entry = await grants_service.grant_second_trial(user.id)
    return {"transaction": _transaction_out(entry), "balance": entry.balance_after.model_dump()}


@router.get("/ad-watch/eligibility")
async def ad_watch_eligibility(user: User = Depends(get_current_user)):
    return await grants_service.ad_watch_eligibility(user.id)


@router.post("/ad-watch")
async def ad_watch_claim(body: AdWatchRequest, user: User = Depends(get_current_user)):
    entry = await grants_service.grant_ad_watch_bonus(user.id, body.videos_watched)
    return {"transaction": _transaction_out(entry), "balance": entry.balance_after.model_dump()}


@router.get("/purchase/eligibility")
async def purchase_eligibility(
    device_id: str | None = Query(None),
    user: User = Depends(get_current_user),
):
    return await antifraud_service.can_make_purchase(user.id, device_id=device_id)
