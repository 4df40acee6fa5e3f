from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field

from gomi_credits.core import clock


class AuditLog(Document):
    actor_id: str | None = None  # operator or system; None for automated flags
    event_type: str  # user_flagged, device_flagged, phone_verified, billing_event_applied, ...
    entity_type: str  # user | device | billing_event
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=clock.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("entity_type", 1), ("entity_id", 1)],
            [("created_at", -1)],
        ]
