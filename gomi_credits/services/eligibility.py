"""Trial eligibility gate.

Four barriers, evaluated in order, the first failure wins and nothing is written:

1. account  - phone verified and no trial claimed yet
2. IP       - fewer than the limit of trial accounts from this address in the window
3. device   - device never used for a trial and not flagged
4. abuse    - the account itself is not flagged (manual flags override everything above)
"""

from datetime import datetime

from beanie import PydanticObjectId
from pydantic import BaseModel

from gomi_credits.core import clock
from gomi_credits.core.config import get_settings
from gomi_credits.core.exceptions import (
    AppError,
    PermissionDeniedError,
    PreconditionFailedError,
    ResourceExhaustedError,
)
from gomi_credits.models.user import User
from gomi_credits.services import devices as devices_service
from gomi_credits.services import ip_usage as ip_usage_service
from gomi_credits.services.credits import load_user

ACCOUNT_LAYER = 1
IP_LAYER = 2
DEVICE_LAYER = 3
ABUSE_LAYER = 4

_LAYER_ERRORS: dict[int, type[AppError]] = {
    ACCOUNT_LAYER: PreconditionFailedError,
    IP_LAYER: ResourceExhaustedError,
    DEVICE_LAYER: PermissionDeniedError,
    ABUSE_LAYER: PermissionDeniedError,
}


class EligibilityResult(BaseModel):
    passed: bool
    layer: int | None = None
    reason: str | None = None  # machine-readable, e.g. "phone_not_verified"
    message: str | None = None

    def error(self) -> AppError:
        """The AppError a caller should raise for this failure."""
        exc_class = _LAYER_ERRORS[self.layer]
        return exc_class(self.message or "Not eligible for trial credits", details={"layer": self.layer, "reason": self.reason})


PASSED = EligibilityResult(passed=True)


def _fail(layer: int, reason: str, message: str) -> EligibilityResult:
    return EligibilityResult(passed=False, layer=layer, reason=reason, message=message)


def check_account_barrier(user: User) -> EligibilityResult:
    antifraud = user.antifraud
    if not antifraud.phone_verified:
        return _fail(ACCOUNT_LAYER, "phone_not_verified", "Verify your phone number before claiming trial credits")
    if antifraud.credit_status != "NOT_CLAIMED":
        return _fail(ACCOUNT_LAYER, "already_claimed", f"Trial credits already claimed ({antifraud.credit_status})")
    return PASSED


async def check_ip_barrier(ip: str, now: datetime) -> EligibilityResult:
    record = await ip_usage_service.get_ip_record(ip)
    if ip_usage_service.limit_reached(record, now):
        s = get_settings()
        return _fail(
            IP_LAYER,
            "ip_limit_reached",
            f"Too many sign-ups from this network: maximum {s.ip_account_limit} accounts per {s.ip_window_hours} hours",
        )
    return PASSED


async def check_device_barrier(device_id: str) -> EligibilityResult:
    record = await devices_service.get_device(device_id)
    if record is None:
        return PASSED
    if record.trial_claimed_by is not None:
        return _fail(DEVICE_LAYER, "device_already_used", "This device has already been used to claim trial credits")
    if record.abuse_flagged:
        return _fail(DEVICE_LAYER, "device_flagged", record.flag_reason or "Device flagged for suspicious activity")
    return PASSED


def check_abuse_flag(user: User) -> EligibilityResult:
    if user.antifraud.abuse_flagged:
        return _fail(ABUSE_LAYER, "account_flagged", user.antifraud.flag_reason or "Account flagged for suspicious activity")
    return PASSED


async def check_eligibility(user: User, device_id: str, ip: str, now: datetime | None = None) -> EligibilityResult:
    """Run the four barriers in order; read-only."""
    now = now or clock.utcnow()
    result = check_account_barrier(user)
    if not result.passed:
        return result
    result = await check_ip_barrier(ip, now)
    if not result.passed:
        return result
    result = await check_device_barrier(device_id)
    if not result.passed:
        return result
    return check_abuse_flag(user)


async def check_eligibility_for_user(user_id: PydanticObjectId, device_id: str, ip: str) -> EligibilityResult:
    user = await load_user(user_id)
    return await check_eligibility(user, device_id, ip)
