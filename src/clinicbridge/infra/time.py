"""Time helpers. Storage is UTC; calendar buckets use the clinic's zone."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def local_today(tz_name: str) -> date:
    """Calendar date right now in `tz_name` (an IANA zone)."""
    return utc_now().astimezone(ZoneInfo(tz_name)).date()
