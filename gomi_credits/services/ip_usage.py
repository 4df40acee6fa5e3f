"""IP registry: accounts that claimed a trial from one address in a rolling window."""

from datetime import datetime, timedelta

from beanie.operators import AddToSet, Inc, Set
from pymongo.errors import DuplicateKeyError

from gomi_credits.core.config import get_settings
from gomi_credits.core.logging import get_logger
from gomi_credits.models.ip_record import IPRecord

log = get_logger(__name__)


def window_is_open(record: IPRecord, now: datetime) -> bool:
    return now - record.window_start < timedelta(hours=get_settings().ip_window_hours)


def limit_reached(record: IPRecord | None, now: datetime) -> bool:
    """True while the current window already holds the maximum number of accounts."""
    if record is None or not window_is_open(record, now):
        return False
    return record.account_count >= get_settings().ip_account_limit


async def get_ip_record(ip: str) -> IPRecord | None:
    return await IPRecord.find_one(IPRecord.ip == ip)


async def record_account_creation(ip: str, user_id: str, now: datetime) -> None:
    """Count `user_id` against `ip`; an expired window restarts at 1."""
    record = await get_ip_record(ip)
    if record is None:
        try:
            await IPRecord(ip=ip, accounts_created=[user_id], window_start=now, account_count=1, created_at=now, updated_at=now).insert()
            return
        except DuplicateKeyError:
            record = await get_ip_record(ip)
    if not window_is_open(record, now):
        await IPRecord.find_one(IPRecord.ip == ip).update(
            Set({
                IPRecord.accounts_created: [user_id],
                IPRecord.window_start: now,
                IPRecord.account_count: 1,
                IPRecord.updated_at: now,
            })
        )
        log.info("ip_window_reset", ip=ip)
        return
    await IPRecord.find_one(IPRecord.ip == ip).update(
        AddToSet({IPRecord.accounts_created: user_id}),
        Inc({IPRecord.account_count: 1}),
        Set({IPRecord.updated_at: now}),
    )
