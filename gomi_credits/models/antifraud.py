from datetime import datetime
from typing import Literal

from pydantic import BaseModel

# Trial-grant progression only; the ad bonus lives on CreditBalance.ad_watch.
CreditStatus = Literal["NOT_CLAIMED", "CLAIMED", "SECOND_GRANT_CLAIMED"]


class AntifraudState(BaseModel):
    phone_verified: bool = False
    phone_number: str | None = None
    credit_status: CreditStatus = "NOT_CLAIMED"
    initial_device_id: str | None = None
    abuse_flagged: bool = False
    flag_reason: str | None = None
    flagged_at: datetime | None = None
