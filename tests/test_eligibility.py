import pytest

from gomi_credits.core.exceptions import (
    PermissionDeniedError,
    PreconditionFailedError,
    ResourceExhaustedError,
)
from gomi_credits.models.device_record import DeviceRecord
from gomi_credits.models.ip_record import IPRecord
from gomi_credits.models.user import User
from gomi_credits.services import antifraud as antifraud_service
from gomi_credits.services import devices as devices_service
from gomi_credits.services import eligibility
from gomi_credits.services import grants as grants_service

pytestmark = pytest.mark.asyncio

IP = "203.0.113.50"


async def test_passes_for_clean_verified_user(make_user):
    user = await make_user()
    result = await eligibility.check_eligibility_for_user(user.id, "device-a", IP)
    assert result.passed
    assert result.layer is None
    # read-only
    assert await DeviceRecord.find_all().count() == 0
    assert await IPRecord.find_all().count() == 0


async def test_account_layer_reported_first(make_user):
    await devices_service.track_device_login("someone", "device-a")
    await devices_service.flag_device("device-a", "fraud ring")
    user = await make_user(phone_verified=False, abuse_flagged=True)

    result = await eligibility.check_eligibility(user, "device-a", IP)
    assert not result.passed
    assert result.layer == eligibility.ACCOUNT_LAYER
    assert result.reason == "phone_not_verified"
    assert isinstance(result.error(), PreconditionFailedError)


async def test_fourth_account_from_ip_is_refused(make_user):
    for n in range(3):
        user = await make_user()
        await grants_service.grant_first_trial(user.id, f"device-{n}", IP)

    fourth = await make_user()
    with pytest.raises(ResourceExhaustedError) as exc:
        await grants_service.grant_first_trial(fourth.id, "device-3", IP)
    assert exc.value.details == {"layer": eligibility.IP_LAYER, "reason": "ip_limit_reached"}
    assert (await User.get(fourth.id)).credits.trial.amount == 0


async def test_ip_window_resets_after_24_hours(make_user, frozen_clock):
    for n in range(3):
        user = await make_user()
        await grants_service.grant_first_trial(user.id, f"device-{n}", IP)

    frozen_clock.advance(hours=24)
    fourth = await make_user()
    entry = await grants_service.grant_first_trial(fourth.id, "device-3", IP)
    assert entry.amount == 500

    record = await IPRecord.find_one(IPRecord.ip == IP)
    assert record.account_count == 1
    assert record.accounts_created == [str(fourth.id)]
    assert record.window_start == frozen_clock.now


async def test_ip_window_still_closed_just_before_24_hours(make_user, frozen_clock):
    for n in range(3):
        user = await make_user()
        await grants_service.grant_first_trial(user.id, f"device-{n}", IP)
    frozen_clock.advance(hours=23, minutes=59)
    fourth = await make_user()
    result = await eligibility.check_eligibility(fourth, "device-3", IP)
    assert result.layer == eligibility.IP_LAYER


async def test_device_used_for_trial_blocks_other_users(make_user):
    first = await make_user()
    await grants_service.grant_first_trial(first.id, "shared-device", IP)

    second = await make_user()
    with pytest.raises(PermissionDeniedError) as exc:
        await grants_service.grant_first_trial(second.id, "shared-device", "198.51.100.9")
    assert exc.value.details == {"layer": eligibility.DEVICE_LAYER, "reason": "device_already_used"}
    assert (await User.get(second.id)).antifraud.credit_status == "NOT_CLAIMED"


async def test_flagged_device_is_refused(make_user):
    await devices_service.track_device_login("someone", "bad-device")
    await devices_service.flag_device("bad-device", "emulator farm")
    user = await make_user()
    result = await eligibility.check_eligibility(user, "bad-device", IP)
    assert result.layer == eligibility.DEVICE_LAYER
    assert result.reason == "device_flagged"
    assert result.message == "emulator farm"


async def test_flagged_account_is_refused(make_user):
    user = await make_user()
    await antifraud_service.flag_user(user.id, "chargeback")
    with pytest.raises(PermissionDeniedError) as exc:
        await grants_service.grant_first_trial(user.id, "device-z", IP)
    assert exc.value.details["layer"] == eligibility.ABUSE_LAYER
    assert exc.value.details["reason"] == "account_flagged"
    assert await IPRecord.find_all().count() == 0


async def test_ip_record_counter_does_not_hide_document_count(make_user):
    user = await make_user()
    await grants_service.grant_first_trial(user.id, "device-a", IP)
    assert "count" not in IPRecord.model_fields
    assert await IPRecord.find_all().count() == 1
    record = await IPRecord.find_one(IPRecord.ip == IP)
    assert record.account_count == 1
