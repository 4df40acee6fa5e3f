from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from gomi_credits.core import clock


class DeviceRecord(Document):
    """Users seen on a device and which one (if any) took its single trial."""
    device_id: Indexed(str, unique=True)
    login_history: list[str] = Field(default_factory=list)  # user ids
    trial_claimed_by: str | None = None  # set once, never reassigned
    abuse_flagged: bool = False
    flag_reason: str | None = None
    flagged_at: datetime | None = None
    created_at: datetime = Field(default_factory=clock.utcnow)
    updated_at: datetime = Field(default_factory=clock.utcnow)

    class Settings:
        name = "device_records"
