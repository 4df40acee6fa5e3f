from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from gomi_credits.deps import require_admin
from gomi_credits.services import antifraud as antifraud_service
from gomi_credits.services import credits as credits_service
from gomi_credits.services import grants as grants_service

router = APIRouter()


class FlagRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PurchaseCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    reason: str = "admin_adjustment"
    reference_id: str | None = None


@router.post("/users/{user_id}/flag")
async def admin_flag_user(user_id: str, body: FlagRequest, actor_id: str = Depends(require_admin)):
    """Admin: flag an account; it can no longer receive free credits."""
    return await antifraud_service.flag_for_abuse(user_id, "USER", body.reason, actor_id=actor_id)


@router.post("/devices/{device_id}/flag")
async def admin_flag_device(device_id: str, body: FlagRequest, actor_id: str = Depends(require_admin)):
    """Admin: flag a device; trials from it are refused."""
    return await antifraud_service.flag_for_abuse(device_id, "DEVICE", body.reason, actor_id=actor_id)


@router.get("/users/{user_id}/credits")
async def admin_user_credits(user_id: PydanticObjectId, actor_id: str = Depends(require_admin)):
    return {"balance": await credits_service.get_balance(user_id)}


@router.post("/users/{user_id}/purchase-credits")
async def admin_purchase_credits(
    user_id: PydanticObjectId,
    body: PurchaseCreditsRequest,
    actor_id: str = Depends(require_admin),
):
    """Admin: credit the purchase pool (support refunds, manual fulfilment)."""
    entry = await grants_service.grant_purchase_credits(
        user_id,
        body.amount,
        reason=body.reason,
        reference_id=body.reference_id,
    )
    return {"transaction_id": str(entry.id), "balance": entry.balance_after.model_dump()}
