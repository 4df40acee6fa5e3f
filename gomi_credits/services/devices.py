"""Device registry: login history, the one trial claim per device, abuse flag."""

from datetime import datetime

from beanie.operators import AddToSet, Set

from gomi_credits.core import clock
from gomi_credits.core.audit import log_event
from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import InvalidArgumentError, NotFoundError
from gomi_credits.core.logging import get_logger
from gomi_credits.models.device_record import DeviceRecord

log = get_logger(__name__)


async def get_device(device_id: str) -> DeviceRecord | None:
    return await DeviceRecord.find_one(DeviceRecord.device_id == device_id)


async def _add_login(device_id: str, user_id: str, now: datetime) -> DeviceRecord:
    await DeviceRecord.find_one(DeviceRecord.device_id == device_id).upsert(
        AddToSet({DeviceRecord.login_history: user_id}),
        Set({DeviceRecord.updated_at: now}),
        on_insert=DeviceRecord(
            device_id=device_id,
            login_history=[user_id],
            created_at=now,
            updated_at=now,
        ),
    )
    return await get_device(device_id)


async def track_device_login(user_id: str, device_id: str) -> DeviceRecord:
    """Record a login; flags the device once more than the threshold of users used it."""
    if not device_id:
        raise InvalidArgumentError("device_id is required")
    now = clock.utcnow()
    record = await _add_login(device_id, user_id, now)
    threshold = get_settings().device_abuse_threshold
    users = len(record.login_history)
    if users > threshold and not record.abuse_flagged:
        reason = f"Device used by {users} different users"
        await DeviceRecord.find_one(
            DeviceRecord.device_id == device_id,
            DeviceRecord.abuse_flagged == False,  # noqa: E712
        ).update(
            Set({
                DeviceRecord.abuse_flagged: True,
                DeviceRecord.flag_reason: reason,
                DeviceRecord.flagged_at: now,
                DeviceRecord.updated_at: now,
            })
        )
        record = await get_device(device_id)
        log.warning("device_flagged", device_id=device_id, users=users)
        await log_event(None, "device_flagged", "device", device_id, {"reason": reason, "users": users})
    return record


async def mark_trial_claimed(device_id: str, user_id: str) -> DeviceRecord:
    """Claim the device's single trial for `user_id`. An existing claim is never overwritten."""
    now = clock.utcnow()
    await _add_login(device_id, user_id, now)
    await DeviceRecord.find_one(
        DeviceRecord.device_id == device_id,
        DeviceRecord.trial_claimed_by == None,  # noqa: E711
    ).update(Set({DeviceRecord.trial_claimed_by: user_id, DeviceRecord.updated_at: now}))
    record = await get_device(device_id)
    if record.trial_claimed_by != user_id:
        log.warning(
            "device_trial_claim_conflict",
            device_id=device_id,
            user_id=user_id,
            claimed_by=record.trial_claimed_by,
        )
    return record


async def flag_device(device_id: str, reason: str, actor_id: str | None = None) -> DeviceRecord:
    """Operator flag; blocks trials and purchases from this device."""
    record = await get_device(device_id)
    if not record:
        raise NotFoundError("Device not found")
    now = clock.utcnow()
    await DeviceRecord.find_one(DeviceRecord.device_id == device_id).update(
        Set({
            DeviceRecord.abuse_flagged: True,
            DeviceRecord.flag_reason: reason,
            DeviceRecord.flagged_at: now,
            DeviceRecord.updated_at: now,
        })
    )
    record = await get_device(device_id)
    log.warning("device_flagged", device_id=device_id, reason=reason, actor_id=actor_id)
    await log_event(actor_id, "device_flagged", "device", device_id, {"reason": reason})
    return record
