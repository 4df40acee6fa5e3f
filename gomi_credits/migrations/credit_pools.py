"""One-shot backfill: legacy integer `credits` -> three-pool balance.

FREE balances become trial credits expiring 14 days after the migration runs.
PRO/ULTRA balances become purchase credits (they never expire) and the monthly
period starts now. Documents already at the current schema version are skipped,
and each write is conditioned on the document still being legacy, so re-running
is safe.

Usage: python -m gomi_credits.migrations.credit_pools
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

from gomi_credits.core import clock
from gomi_credits.core.config import get_settings
from gomi_credits.core.logging import configure_logging, get_logger
from gomi_credits.db.init import init_db
from gomi_credits.models.antifraud import AntifraudState
from gomi_credits.models.credit_balance import CreditBalance
from gomi_credits.models.user import CURRENT_SCHEMA_VERSION, User

log = get_logger(__name__)

LEGACY_FILTER = {
    "$or": [
        {"schema_version": {"$exists": False}},
        {"schema_version": {"$lt": CURRENT_SCHEMA_VERSION}},
    ]
}


def _legacy_amount(raw: dict[str, Any]) -> int:
    value = raw.get("credits")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def convert_legacy_document(raw: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Return the `$set` for one legacy user document."""
    settings = get_settings()
    tier = (raw.get("subscription") or {}).get("tier") or "FREE"
    if tier not in ("PRO", "ULTRA"):
        tier = "FREE"
    old_credits = _legacy_amount(raw)

    credits = CreditBalance()
    credits.monthly.subscription_tier = tier
    if tier == "FREE":
        if old_credits > 0:
            credits.trial.amount = old_credits
            credits.trial.granted_at = now
            credits.trial.expires_at = now + timedelta(days=settings.trial_expiry_days)
            credits.trial.first_grant_claimed = True
    else:
        credits.purchase.amount = old_credits
        credits.purchase.total_purchased = old_credits
        credits.monthly.reset_at = now + timedelta(days=settings.monthly_period_days)
    credits.recompute_total()

    antifraud = AntifraudState(
        phone_number=raw.get("phone_number") or raw.get("phoneNumber"),
        credit_status="CLAIMED" if credits.trial.first_grant_claimed else "NOT_CLAIMED",
        initial_device_id=raw.get("device_id") or raw.get("deviceId"),
    )
    return {
        "credits": credits.model_dump(),
        "antifraud": antifraud.model_dump(),
        "schema_version": CURRENT_SCHEMA_VERSION,
        "ledger_version": 0,
        "applied_keys": [],
        "updated_at": now,
    }


async def migrate_legacy_balances() -> dict[str, int]:
    collection = User.get_motor_collection()
    migrated = skipped = failed = 0
    async for raw in collection.find(LEGACY_FILTER):
        now = clock.utcnow()
        try:
            update = convert_legacy_document(raw, now)
        except ValueError:
            failed += 1
            log.exception("migration_convert_failed", user_id=str(raw["_id"]))
            continue
        result = await collection.update_one({"_id": raw["_id"], **LEGACY_FILTER}, {"$set": update})
        if result.modified_count == 1:
            migrated += 1
            log.info(
                "user_migrated",
                user_id=str(raw["_id"]),
                legacy_credits=_legacy_amount(raw),
                trial=update["credits"]["trial"]["amount"],
                purchase=update["credits"]["purchase"]["amount"],
            )
        else:
            skipped += 1
    summary = {"migrated": migrated, "skipped": skipped, "failed": failed}
    log.info("migration_done", **summary)
    return summary


async def _run() -> dict[str, int]:
    configure_logging(debug=get_settings().debug)
    await init_db()
    return await migrate_legacy_balances()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
