"""
Core utilities module for the context optimizer.
"""

# Datetime utilities
from .datetime_utils import (
    utc_now,
    utc_now_iso,
    utc_today,
    utc_today_iso,
    ensure_utc,
    format_iso,
    set_mock_time,
    utc_now_testable,
)

__all__ = [
    'utc_now',
    'utc_now_iso',
    'utc_today',
    'utc_today_iso',
    'ensure_utc',
    'format_iso',
    'set_mock_time',
    'utc_now_testable',
]
