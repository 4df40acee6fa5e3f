"""Three-pool credit balance embedded in each user document.

Pools expire differently: trial credits after a fixed window, monthly credits
are replaced on every subscription renewal, purchase credits never expire.
Spending drains them in that same order so the fewest credits are lost.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

SubscriptionTier = Literal["FREE", "PRO", "ULTRA"]
PoolName = Literal["TRIAL", "MONTHLY", "PURCHASE"]


class TrialPool(BaseModel):
    amount: int = Field(default=0, ge=0)
    granted_at: datetime | None = None
    expires_at: datetime | None = None
    first_grant_claimed: bool = False
    second_grant_claimed: bool = False
    second_grant_eligible_at: datetime | None = None
    # Trial balance when the first-grant window ran out; sizes the second grant.
    remaining_at_first_expiry: int | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def has_live_window(self, now: datetime) -> bool:
        return self.expires_at is not None and now < self.expires_at


class MonthlyPool(BaseModel):
    amount: int = Field(default=0, ge=0)
    reset_at: datetime | None = None
    subscription_tier: SubscriptionTier = "FREE"


class PurchasePool(BaseModel):
    amount: int = Field(default=0, ge=0)
    total_purchased: int = Field(default=0, ge=0)  # lifetime


class AdWatchBonus(BaseModel):
    claimed: bool = False
    claimed_at: datetime | None = None


class BalanceSnapshot(BaseModel):
    trial: int
    monthly: int
    purchase: int
    total: int


class DeductionBreakdown(BaseModel):
    trial_used: int = 0
    monthly_used: int = 0
    purchase_used: int = 0

    @property
    def total(self) -> int:
        return self.trial_used + self.monthly_used + self.purchase_used

    @property
    def primary_pool(self) -> PoolName:
        if self.trial_used:
            return "TRIAL"
        if self.monthly_used:
            return "MONTHLY"
        return "PURCHASE"


class CreditBalance(BaseModel):
    trial: TrialPool = Field(default_factory=TrialPool)
    monthly: MonthlyPool = Field(default_factory=MonthlyPool)
    purchase: PurchasePool = Field(default_factory=PurchasePool)
    ad_watch: AdWatchBonus = Field(default_factory=AdWatchBonus)
    total: int = 0  # always trial + monthly + purchase; see recompute_total

    def recompute_total(self) -> int:
        self.total = self.trial.amount + self.monthly.amount + self.purchase.amount
        return self.total

    def snapshot(self) -> BalanceSnapshot:
        return BalanceSnapshot(
            trial=self.trial.amount,
            monthly=self.monthly.amount,
            purchase=self.purchase.amount,
            total=self.trial.amount + self.monthly.amount + self.purchase.amount,
        )

    def expire_trial(self, now: datetime) -> int:
        """Zero the trial pool if its window has passed. Returns the amount expired."""
        trial = self.trial
        if trial.amount <= 0 or not trial.is_expired(now):
            return 0
        expired = trial.amount
        if (
            trial.first_grant_claimed
            and not trial.second_grant_claimed
            and trial.remaining_at_first_expiry is None
        ):
            trial.remaining_at_first_expiry = expired
        trial.amount = 0
        self.recompute_total()
        return expired

    def consume(self, amount: int) -> DeductionBreakdown:
        """Spend trial first, then monthly, then purchase.

        Caller must have checked total >= amount; a shortfall here is a bug.
        """
        if amount > self.recompute_total():
            raise ValueError(f"cannot consume {amount} from total {self.total}")
        remaining = amount
        trial_used = min(remaining, self.trial.amount)
        remaining -= trial_used
        monthly_used = min(remaining, self.monthly.amount)
        remaining -= monthly_used
        purchase_used = min(remaining, self.purchase.amount)

        self.trial.amount -= trial_used
        self.monthly.amount -= monthly_used
        self.purchase.amount -= purchase_used
        self.recompute_total()
        return DeductionBreakdown(
            trial_used=trial_used,
            monthly_used=monthly_used,
            purchase_used=purchase_used,
        )
