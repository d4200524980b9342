"""
Laundry Portal - Timestamp Utilities

Indian Standard Time (IST = UTC+5:30) helpers. Drafts are stored with naive
UTC timestamps; everything shown to users is rendered in IST.
"""

from datetime import date, datetime, timezone, timedelta
from typing import Optional, Union

# Indian Standard Time (UTC+5:30, no DST)
IST = timezone(timedelta(hours=5, minutes=30), name="IST")


def now_utc() -> datetime:
    """Return the current time as naive UTC (compatible with database datetimes)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_ist() -> datetime:
    """Return the current time in IST."""
    return datetime.now(IST)


def today_ist() -> date:
    """Today's date in IST, used as the earliest bookable pickup date."""
    return now_ist().date()


def parse_api_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as returned by the backend.

    The backend emits `2024-01-19T10:15:00.000Z`; a trailing `Z` is not
    accepted by `fromisoformat` on every supported interpreter.
    """
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def to_ist(dt: datetime) -> datetime:
    """
    Convert a UTC datetime to an IST-aware datetime.

    Args:
        dt: A datetime in UTC (naive or aware).

    Returns:
        Timezone-aware datetime in IST.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(IST)


def format_ist(value: Union[datetime, str, None], fmt: str = "%d %b %Y, %H:%M") -> str:
    """Format a UTC datetime (or backend ISO string) for display in IST."""
    if isinstance(value, str):
        value = parse_api_datetime(value)
    if value is None:
        return ""
    return to_ist(value).strftime(fmt)


def format_pickup_date(value: Optional[str]) -> str:
    """Render a `YYYY-MM-DD` pickup date as e.g. `Saturday, 20 Jan 2024`."""
    if not value:
        return ""
    try:
        return date.fromisoformat(value[:10]).strftime("%A, %d %b %Y")
    except ValueError:
        return value
