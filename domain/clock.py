"""Timezone-aware UTC time for records and tokens."""
from datetime import datetime, timezone

from sqlalchemy import DateTime

# Column type for every stored timestamp (timestamptz on PostgreSQL)
UTCTimestamp = DateTime(timezone=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Aware UTC; naive values are taken to already be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
