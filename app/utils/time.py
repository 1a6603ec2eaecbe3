"""Time utilities for message timestamps."""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current timezone-aware UTC time."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def epoch_millis(moment: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch for ``moment`` (defaults to now)."""
    if moment is None:
        moment = utc_now()
    return int(moment.timestamp() * 1000)


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
