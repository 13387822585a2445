from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(seconds: Optional[int]) -> Optional[datetime]:
    if not seconds:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def parse_uuid(value: Any) -> Optional[UUID]:
    """Return a UUID for valid identifiers, None for anything else"""
    if isinstance(value, UUID):
        return value
    if not value:
        return None
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))
