from fastapi import APIRouter, Header, Request

from gomi_credits.services import billing as billing_service

router = APIRouter()


@router.post("/webhook")
async def billing_webhook(request: Request, x_billing_signature: str = Header(..., alias="X-Billing-Signature")):
    """Billing provider webhook: subscription and credit-pack events -> grants (idempotent per event id)."""
    body = await request.body()
    return await billing_service.handle_webhook(body, x_billing_signature)
