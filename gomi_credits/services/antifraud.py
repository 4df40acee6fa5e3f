"""Account-level anti-abuse state: phone verification, manual flags, purchase checks."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from gomi_credits.core.audit import log_event
from gomi_credits.core.exceptions import ConflictError, InvalidArgumentError
from gomi_credits.core.logging import get_logger
from gomi_credits.models.user import User
from gomi_credits.services import devices as devices_service
from gomi_credits.services.credits import apply_ledger_change, load_user

log = get_logger(__name__)

FLAG_TARGETS = ("USER", "DEVICE")


async def phone_number_in_use(phone_number: str, exclude_user_id: PydanticObjectId | None = None) -> bool:
    """True if another account already verified this number."""
    other = await User.find_one(
        User.antifraud.phone_number == phone_number,
        User.antifraud.phone_verified == True,  # noqa: E712
    )
    return other is not None and other.id != exclude_user_id


async def verify_phone(user_id: PydanticObjectId, phone_number: str) -> User:
    """Mark the account's phone verified. One verified account per number."""
    phone_number = (phone_number or "").strip()
    if not phone_number:
        raise InvalidArgumentError("phone_number is required")
    if await phone_number_in_use(phone_number, exclude_user_id=user_id):
        log.warning("phone_number_reused", user_id=str(user_id))
        raise ConflictError("Phone number already verified on another account")

    def _verify(u: User, now: datetime) -> None:
        u.antifraud.phone_verified = True
        u.antifraud.phone_number = phone_number

    try:
        user, _ = await apply_ledger_change(user_id, _verify)
    except DuplicateKeyError as e:
        # Lost a race with another account verifying the same number.
        log.warning("phone_number_reused", user_id=str(user_id))
        raise ConflictError("Phone number already verified on another account") from e
    log.info("phone_verified", user_id=str(user_id))
    await log_event(str(user_id), "phone_verified", "user", str(user_id))
    return user


async def flag_user(user_id: PydanticObjectId, reason: str, actor_id: str | None = None) -> User:
    def _flag(u: User, now: datetime) -> None:
        u.antifraud.abuse_flagged = True
        u.antifraud.flag_reason = reason
        u.antifraud.flagged_at = now

    user, _ = await apply_ledger_change(user_id, _flag)
    log.warning("user_flagged", user_id=str(user_id), reason=reason, actor_id=actor_id)
    await log_event(actor_id, "user_flagged", "user", str(user_id), {"reason": reason})
    return user


async def flag_for_abuse(target_id: str, target_type: str, reason: str, actor_id: str | None = None) -> dict[str, Any]:
    """Manual flag on a USER (by id) or DEVICE (by device id)."""
    if target_type not in FLAG_TARGETS:
        raise InvalidArgumentError(f"target_type must be one of {', '.join(FLAG_TARGETS)}")
    if not reason:
        raise InvalidArgumentError("reason is required")
    if target_type == "USER":
        if not PydanticObjectId.is_valid(target_id):
            raise InvalidArgumentError("Invalid user id")
        user = await flag_user(PydanticObjectId(target_id), reason, actor_id=actor_id)
        return {"target_type": "USER", "target_id": str(user.id), "flagged_at": user.antifraud.flagged_at}
    device = await devices_service.flag_device(target_id, reason, actor_id=actor_id)
    return {"target_type": "DEVICE", "target_id": device.device_id, "flagged_at": device.flagged_at}


async def can_make_purchase(user_id: PydanticObjectId, device_id: str | None = None) -> dict[str, Any]:
    user = await load_user(user_id)
    if user.antifraud.abuse_flagged:
        return {"allowed": False, "reason": "Account flagged for suspicious activity"}
    if device_id:
        device = await devices_service.get_device(device_id)
        if device and device.abuse_flagged:
            return {"allowed": False, "reason": "Device flagged for suspicious activity"}
    return {"allowed": True}
