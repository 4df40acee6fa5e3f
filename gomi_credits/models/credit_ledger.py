from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

from gomi_credits.core import clock
from gomi_credits.models.credit_balance import BalanceSnapshot, DeductionBreakdown, PoolName

TransactionType = Literal["GRANT", "DEDUCTION"]


class CreditTransaction(Document):
    """Append-only audit record of one balance change. Never updated, never read for decisions."""
    user_id: PydanticObjectId
    type: TransactionType
    amount: int  # always positive; direction is `type`
    pool: PoolName  # pool granted into, or first pool drained on deduction
    reason: str  # first_trial_grant, second_trial_grant, ad_watch_bonus, monthly_grant, purchase, trial_expired, or caller reason
    feature_type: str | None = None
    breakdown: DeductionBreakdown | None = None
    balance_before: BalanceSnapshot
    balance_after: BalanceSnapshot
    idempotency_key: str | None = None
    reference_id: str | None = None  # billing event id, operator id, etc.
    created_at: datetime = Field(default_factory=clock.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("user_id", 1), ("idempotency_key", 1)],
        ]
