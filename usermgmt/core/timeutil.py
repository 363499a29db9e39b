"""Datetime helpers. All stored timestamps are naive UTC."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: str, end_of_day: bool = False) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime string.

    Returns None for malformed input. Aware values are converted to naive UTC.
    With ``end_of_day`` the time is moved to 23:59:59.999 of the same day.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    if end_of_day:
        parsed = parsed.replace(hour=23, minute=59, second=59, microsecond=999000)
    return parsed
