"""
Centralized datetime utilities for the context optimizer.

All datetimes are handled in UTC. Daily quotas and daily token stats are
keyed by the UTC calendar day returned by ``utc_today_iso()``.

Code that depends on "now" (quota resets, stats rows) goes through
``utc_now_testable()`` so tests can simulate a day rollover with
``set_mock_time()`` instead of sleeping.
"""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC timezone.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    elif dt.tzinfo == timezone.utc:
        return dt
    else:
        return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO string with Z suffix.

    Always carries microseconds so stored timestamps sort lexicographically.

    Example: "2024-01-15T10:30:45.123456Z"
    """
    utc_dt = ensure_utc(dt)
    return utc_dt.isoformat(timespec="microseconds").replace('+00:00', 'Z')


# For testing and mocking
_mock_time: Optional[datetime] = None


def set_mock_time(dt: Optional[datetime]) -> None:
    """
    Set mock time for testing.

    Example:
        set_mock_time(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))
        current = utc_now_testable()  # Returns the mocked time
        set_mock_time(None)
    """
    global _mock_time
    _mock_time = ensure_utc(dt) if dt else None


def utc_now_testable() -> datetime:
    """
    Get current time (mockable for tests).

    Returns:
        Mock time if set, otherwise current UTC time
    """
    return _mock_time if _mock_time else utc_now()


def utc_now_iso() -> str:
    """Current (mockable) UTC datetime as ISO string with 'Z' suffix."""
    return format_iso(utc_now_testable())


def utc_today() -> date:
    """Current (mockable) UTC calendar day."""
    return utc_now_testable().date()


def utc_today_iso() -> str:
    """Current (mockable) UTC calendar day as YYYY-MM-DD."""
    return utc_today().isoformat()
