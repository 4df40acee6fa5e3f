"""Billing webhook: HMAC-verified subscription and credit-pack events -> ledger grants.

Payment itself happens at the billing provider; this only turns confirmed
events into credits. Every event is applied under the key `billing:<event id>`,
so provider retries are replays, not double grants.
"""

import json
from typing import Any

from gomi_credits.core.audit import log_event
from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import InvalidArgumentError, NotFoundError
from gomi_credits.core.logging import get_logger
from gomi_credits.core.security import verify_webhook_signature
from gomi_credits.models.user import User
from gomi_credits.services import grants as grants_service

log = get_logger(__name__)

# Credit packs sold in the app (JPY price -> credits)
CREDIT_PACKS = {
    "EXTRA_1": {"price": 199, "credits": 300},
    "EXTRA_2": {"price": 798, "credits": 1500},
}

SUBSCRIPTION_EVENTS = ("subscription.activated", "subscription.renewed")
PURCHASE_EVENTS = ("purchase.completed",)


def pack_credits(data: dict[str, Any]) -> int:
    product_id = data.get("product_id")
    if product_id:
        pack = CREDIT_PACKS.get(product_id)
        if not pack:
            raise InvalidArgumentError(f"Unknown credit pack: {product_id}")
        return pack["credits"]
    credits = data.get("credits")
    if not isinstance(credits, int) or credits <= 0:
        raise InvalidArgumentError("purchase.completed needs product_id or positive credits")
    return credits


async def _user_for_event(data: dict[str, Any]) -> User:
    app_user_id = data.get("app_user_id")
    if not app_user_id:
        raise InvalidArgumentError("Event is missing app_user_id")
    user = await User.find_one(User.firebase_uid == app_user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def handle_webhook(payload: bytes, signature: str) -> dict[str, Any]:
    """Verify HMAC and apply the event idempotently."""
    settings = get_settings()
    if not settings.billing_webhook_secret:
        raise InvalidArgumentError("Webhook secret not configured")
    if not verify_webhook_signature(payload, signature, settings.billing_webhook_secret):
        raise InvalidArgumentError("Invalid webhook signature")
    try:
        body = json.loads(payload.decode())
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidArgumentError("Webhook body is not JSON") from e

    event = body.get("event")
    event_id = body.get("id")
    data = body.get("data") or {}
    if event not in SUBSCRIPTION_EVENTS + PURCHASE_EVENTS:
        log.info("billing_event_ignored", billing_event=event, event_id=event_id)
        return {"status": "ignored"}
    if not event_id:
        raise InvalidArgumentError("Event is missing id")

    user = await _user_for_event(data)
    key = f"billing:{event_id}"
    if event in SUBSCRIPTION_EVENTS:
        entry = await grants_service.grant_monthly_credits(
            user.id,
            data.get("tier", ""),
            idempotency_key=key,
            reference_id=event_id,
        )
    else:
        entry = await grants_service.grant_purchase_credits(
            user.id,
            pack_credits(data),
            reason=f"purchase ({data.get('product_id') or 'custom'})",
            idempotency_key=key,
            reference_id=event_id,
        )
    log.info("billing_event_applied", billing_event=event, event_id=event_id, user_id=str(user.id), credits=entry.amount)
    await log_event(None, "billing_event_applied", "billing_event", event_id, {"event": event, "user_id": str(user.id), "credits": entry.amount})
    return {"status": "applied", "credits": entry.amount, "pool": entry.pool}
