import pytest

from gomi_credits.core.exceptions import (
    InvalidArgumentError,
    PermissionDeniedError,
    PreconditionFailedError,
)
from gomi_credits.models.device_record import DeviceRecord
from gomi_credits.models.ip_record import IPRecord
from gomi_credits.models.user import User
from gomi_credits.services import credits as credits_service
from gomi_credits.services import grants as grants_service

pytestmark = pytest.mark.asyncio


async def _first_trial(user, device_id="device-1", ip="203.0.113.7"):
    return await grants_service.grant_first_trial(user.id, device_id, ip)


async def test_first_trial_grant(make_user, frozen_clock):
    user = await make_user()
    entry = await _first_trial(user)

    assert entry.type == "GRANT"
    assert entry.amount == 500
    assert entry.pool == "TRIAL"
    stored = await User.get(user.id)
    trial = stored.credits.trial
    assert trial.amount == 500
    assert trial.first_grant_claimed
    assert trial.granted_at == frozen_clock.now
    assert (trial.expires_at - trial.granted_at).days == 14
    assert trial.second_grant_eligible_at == trial.expires_at
    assert stored.antifraud.credit_status == "CLAIMED"
    assert stored.antifraud.initial_device_id == "device-1"

    device = await DeviceRecord.find_one(DeviceRecord.device_id == "device-1")
    assert device.trial_claimed_by == str(user.id)
    ip = await IPRecord.find_one(IPRecord.ip == "203.0.113.7")
    assert ip.account_count == 1
    assert ip.accounts_created == [str(user.id)]


async def test_first_trial_is_granted_once(make_user):
    user = await make_user()
    await _first_trial(user)
    with pytest.raises(PreconditionFailedError) as exc:
        await _first_trial(user, device_id="device-2", ip="198.51.100.1")
    assert exc.value.details["reason"] == "already_claimed"
    assert (await User.get(user.id)).credits.trial.amount == 500


async def test_first_trial_requires_device_and_ip(make_user):
    user = await make_user()
    with pytest.raises(InvalidArgumentError):
        await grants_service.grant_first_trial(user.id, "", "203.0.113.7")


@pytest.mark.parametrize("remaining,expected", [(350, 300), (300, 300), (200, 100), (0, 100)])
async def test_second_trial_amount_depends_on_remaining(make_user, frozen_clock, remaining, expected):
    user = await make_user()
    await _first_trial(user)
    if remaining < 500:
        await credits_service.deduct(user.id, 500 - remaining, "chat")
    frozen_clock.advance(days=15)

    entry = await grants_service.grant_second_trial(user.id)
    assert entry.amount == expected

    stored = await User.get(user.id)
    assert stored.credits.trial.amount == expected
    assert (stored.credits.trial.remaining_at_first_expiry or 0) == remaining
    assert stored.credits.trial.second_grant_claimed
    assert (stored.credits.trial.expires_at - frozen_clock.now).days == 14
    assert stored.antifraud.credit_status == "SECOND_GRANT_CLAIMED"


async def test_second_trial_uses_balance_at_expiry_not_later(make_user, frozen_clock):
    user = await make_user()
    await _first_trial(user)
    await credits_service.deduct(user.id, 150, "chat")  # 350 left
    frozen_clock.advance(days=14)
    await credits_service.get_balance(user.id)  # expiry recorded here
    frozen_clock.advance(days=30)
    entry = await grants_service.grant_second_trial(user.id)
    assert entry.amount == 300


async def test_second_trial_not_before_first_expires(make_user, frozen_clock):
    user = await make_user()
    await _first_trial(user)
    frozen_clock.advance(days=13)
    with pytest.raises(PreconditionFailedError) as exc:
        await grants_service.grant_second_trial(user.id)
    assert exc.value.details["reason"] == "first_trial_active"


async def test_second_trial_only_once(make_user, frozen_clock):
    user = await make_user()
    await _first_trial(user)
    frozen_clock.advance(days=15)
    await grants_service.grant_second_trial(user.id)
    with pytest.raises(PreconditionFailedError):
        await grants_service.grant_second_trial(user.id)


async def test_second_trial_needs_first(make_user):
    user = await make_user()
    with pytest.raises(PreconditionFailedError) as exc:
        await grants_service.grant_second_trial(user.id)
    assert exc.value.details["reason"] == "first_grant_not_claimed"


async def test_second_trial_refused_for_flagged_account(make_user, frozen_clock):
    user = await make_user()
    await _first_trial(user)
    frozen_clock.advance(days=15)
    from gomi_credits.services import antifraud as antifraud_service
    await antifraud_service.flag_user(user.id, "manual review")
    with pytest.raises(PermissionDeniedError):
        await grants_service.grant_second_trial(user.id)


async def test_second_trial_eligibility_preview(make_user, frozen_clock):
    user = await make_user()
    await _first_trial(user)
    preview = await grants_service.second_trial_eligibility(user.id)
    assert preview["eligible"] is False
    assert preview["code"] == "FAILED_PRECONDITION"
    frozen_clock.advance(days=15)
    assert await grants_service.second_trial_eligibility(user.id) == {"eligible": True, "grant_amount": 300}


async def test_ad_watch_bonus_low_balance(make_user):
    user = await make_user(trial=30)
    entry = await grants_service.grant_ad_watch_bonus(user.id, 4)

    assert entry.amount == 50
    stored = await User.get(user.id)
    assert stored.credits.trial.amount == 80
    assert stored.credits.total == 80
    assert stored.credits.ad_watch.claimed
    # Existing window is kept.
    assert stored.credits.trial.expires_at == user.credits.trial.expires_at
    assert stored.antifraud.credit_status == "NOT_CLAIMED"


async def test_ad_watch_bonus_without_trial_window_gets_one(make_user, frozen_clock):
    user = await make_user()
    await grants_service.grant_ad_watch_bonus(user.id, 4)
    stored = await User.get(user.id)
    assert stored.credits.trial.amount == 50
    assert (stored.credits.trial.expires_at - frozen_clock.now).days == 14


@pytest.mark.parametrize("videos", [0, 3, 5])
async def test_ad_watch_bonus_requires_four_videos(make_user, videos):
    user = await make_user(trial=10)
    with pytest.raises(InvalidArgumentError):
        await grants_service.grant_ad_watch_bonus(user.id, videos)


async def test_ad_watch_bonus_once(make_user):
    user = await make_user(trial=10)
    await grants_service.grant_ad_watch_bonus(user.id, 4)
    with pytest.raises(PreconditionFailedError) as exc:
        await grants_service.grant_ad_watch_bonus(user.id, 4)
    assert exc.value.details["reason"] == "already_claimed"


async def test_ad_watch_bonus_balance_too_high(make_user):
    user = await make_user(trial=50)
    with pytest.raises(PreconditionFailedError) as exc:
        await grants_service.grant_ad_watch_bonus(user.id, 4)
    assert exc.value.details["reason"] == "balance_too_high"


async def test_ad_watch_bonus_free_tier_only(make_user):
    user = await make_user(tier="PRO")
    preview = await grants_service.ad_watch_eligibility(user.id)
    assert preview["eligible"] is False
    with pytest.raises(PreconditionFailedError):
        await grants_service.grant_ad_watch_bonus(user.id, 4)


async def test_monthly_credits_replace_instead_of_accumulating(make_user, frozen_clock):
    user = await make_user()
    await grants_service.grant_monthly_credits(user.id, "PRO")
    await credits_service.deduct(user.id, 1000, "chat")
    frozen_clock.advance(days=30)
    entry = await grants_service.grant_monthly_credits(user.id, "PRO")

    assert entry.amount == 3000
    stored = await User.get(user.id)
    assert stored.credits.monthly.amount == 3000
    assert stored.credits.monthly.subscription_tier == "PRO"
    assert (stored.credits.monthly.reset_at - frozen_clock.now).days == 30


async def test_monthly_credits_ultra(make_user):
    user = await make_user()
    await grants_service.grant_monthly_credits(user.id, "ULTRA")
    stored = await User.get(user.id)
    assert stored.credits.monthly.amount == 10000
    assert stored.credits.total == 10000


async def test_monthly_credits_unknown_tier(make_user):
    user = await make_user()
    with pytest.raises(InvalidArgumentError):
        await grants_service.grant_monthly_credits(user.id, "FREE")


async def test_purchase_credits_accumulate(make_user):
    user = await make_user(purchase=100)
    await grants_service.grant_purchase_credits(user.id, 300)
    stored = await User.get(user.id)
    assert stored.credits.purchase.amount == 400
    assert stored.credits.purchase.total_purchased == 400


async def test_purchase_credits_positive_only(make_user):
    user = await make_user()
    with pytest.raises(InvalidArgumentError):
        await grants_service.grant_purchase_credits(user.id, 0)


async def test_first_trial_keeps_earlier_ad_bonus(make_user):
    user = await make_user()
    await grants_service.grant_ad_watch_bonus(user.id, 4)
    entry = await _first_trial(user)

    assert entry.amount == 500
    assert entry.balance_before.trial == 50
    assert entry.balance_after.trial == 550
    assert entry.balance_after.total - entry.balance_before.total == entry.amount
    stored = await User.get(user.id)
    assert stored.credits.trial.amount == 550
    assert stored.credits.ad_watch.claimed


async def test_device_claimed_even_if_ip_registry_write_fails(make_user, monkeypatch):
    from pymongo.errors import PyMongoError

    from gomi_credits.services import ip_usage as ip_usage_service

    async def _broken(ip, user_id, now):
        raise PyMongoError("ip registry down")

    monkeypatch.setattr(ip_usage_service, "record_account_creation", _broken)
    user = await make_user()
    entry = await _first_trial(user, device_id="device-9")

    assert entry.amount == 500
    device = await DeviceRecord.find_one(DeviceRecord.device_id == "device-9")
    assert device.trial_claimed_by == str(user.id)
    assert await IPRecord.find_one(IPRecord.ip == "203.0.113.7") is None
