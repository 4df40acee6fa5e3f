from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from gomi_credits.core import clock


class IPRecord(Document):
    """Trial-claiming accounts per source IP in a rolling window."""
    ip: Indexed(str, unique=True)
    accounts_created: list[str] = Field(default_factory=list)  # user ids in current window
    window_start: datetime
    account_count: int = 0
    created_at: datetime = Field(default_factory=clock.utcnow)
    updated_at: datetime = Field(default_factory=clock.utcnow)

    class Settings:
        name = "ip_records"
