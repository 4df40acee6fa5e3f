"""Single source of "now" for ledger expiry and registry windows."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC, matching what MongoDB hands back for stored datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
