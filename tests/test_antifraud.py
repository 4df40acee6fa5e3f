import pytest

from gomi_credits.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from gomi_credits.models.user import User
from gomi_credits.services import antifraud as antifraud_service
from gomi_credits.services import devices as devices_service

pytestmark = pytest.mark.asyncio


async def test_verify_phone(make_user):
    user = await make_user(phone_verified=False)
    await antifraud_service.verify_phone(user.id, " +81 90 1111 2222 ")
    stored = await User.get(user.id)
    assert stored.antifraud.phone_verified
    assert stored.antifraud.phone_number == "+81 90 1111 2222"


async def test_phone_number_verified_once_across_accounts(make_user):
    first = await make_user(phone_verified=False)
    second = await make_user(phone_verified=False)
    await antifraud_service.verify_phone(first.id, "+819011112222")
    with pytest.raises(ConflictError):
        await antifraud_service.verify_phone(second.id, "+819011112222")
    # re-verifying the same account is fine
    await antifraud_service.verify_phone(first.id, "+819011112222")


async def test_flag_for_abuse_user(make_user):
    user = await make_user()
    out = await antifraud_service.flag_for_abuse(str(user.id), "USER", "multi-accounting", actor_id="ops")
    assert out["target_type"] == "USER"
    stored = await User.get(user.id)
    assert stored.antifraud.abuse_flagged
    assert stored.antifraud.flag_reason == "multi-accounting"


async def test_flag_for_abuse_device(db):
    await devices_service.track_device_login("u1", "dev-9")
    out = await antifraud_service.flag_for_abuse("dev-9", "DEVICE", "rooted", actor_id="ops")
    assert out["target_id"] == "dev-9"


@pytest.mark.parametrize(
    "target_id,target_type,reason",
    [("x", "ACCOUNT", "r"), ("not-an-object-id", "USER", "r"), ("dev", "DEVICE", "")],
)
async def test_flag_for_abuse_bad_arguments(db, target_id, target_type, reason):
    with pytest.raises(InvalidArgumentError):
        await antifraud_service.flag_for_abuse(target_id, target_type, reason)


async def test_flag_for_abuse_unknown_device(db):
    with pytest.raises(NotFoundError):
        await antifraud_service.flag_for_abuse("ghost", "DEVICE", "r")


async def test_can_make_purchase(make_user):
    user = await make_user()
    assert await antifraud_service.can_make_purchase(user.id) == {"allowed": True}

    await devices_service.track_device_login(str(user.id), "dev")
    await devices_service.flag_device("dev", "reseller")
    out = await antifraud_service.can_make_purchase(user.id, device_id="dev")
    assert out["allowed"] is False

    await antifraud_service.flag_user(user.id, "chargeback")
    out = await antifraud_service.can_make_purchase(user.id)
    assert out == {"allowed": False, "reason": "Account flagged for suspicious activity"}


async def test_phone_number_unique_at_commit(make_user, monkeypatch):
    first = await make_user(phone_verified=False)
    second = await make_user(phone_verified=False)
    await antifraud_service.verify_phone(first.id, "+819033334444")

    async def _not_in_use(phone_number, exclude_user_id=None):
        return False

    # Both requests passed the lookup; the index decides at write time.
    monkeypatch.setattr(antifraud_service, "phone_number_in_use", _not_in_use)
    with pytest.raises(ConflictError):
        await antifraud_service.verify_phone(second.id, "+819033334444")
    stored = await User.get(second.id)
    assert not stored.antifraud.phone_verified
