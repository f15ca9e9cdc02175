"""
Small helpers shared by services.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def elapsed_ms(started_at: datetime, completed_at: datetime) -> int:
    return int((ensure_aware(completed_at) - ensure_aware(started_at)).total_seconds() * 1000)
