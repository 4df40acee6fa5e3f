from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from gomi_credits.core import clock
from gomi_credits.models.antifraud import AntifraudState
from gomi_credits.models.credit_balance import CreditBalance

# 1: legacy integer `credits` field; 2: three-pool CreditBalance + AntifraudState.
LEGACY_SCHEMA_VERSION = 1
CURRENT_SCHEMA_VERSION = 2


class User(Document):
    firebase_uid: Indexed(str, unique=True)
    email: str | None = None
    display_name: str = ""
    role: str = "user"  # "user" | "admin"
    session_version: int = 0
    schema_version: int = CURRENT_SCHEMA_VERSION
    # Bumped on every ledger commit; commits are conditional on the loaded value.
    ledger_version: int = 0
    credits: CreditBalance = Field(default_factory=CreditBalance)
    antifraud: AntifraudState = Field(default_factory=AntifraudState)
    applied_keys: list[str] = Field(default_factory=list)
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=clock.utcnow)
    updated_at: datetime = Field(default_factory=clock.utcnow)

    class Settings:
        name = "users"
        indexes = [
            # One verified account per phone number; unverified numbers may repeat.
            IndexModel(
                [("antifraud.phone_number", ASCENDING)],
                name="verified_phone_unique",
                unique=True,
                partialFilterExpression={"antifraud.phone_verified": True},
            ),
            [("credits.trial.expires_at", 1)],
        ]
