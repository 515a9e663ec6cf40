"""Time helpers (naive UTC, matching the DateTime columns)"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current UTC time without tzinfo"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive-UTC datetime as an ISO string with a Z suffix"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + "Z"
