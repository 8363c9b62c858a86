"""
Timestamp utilities for consistent time handling across the pipeline.

Event timestamps travel as integer epoch milliseconds; store TTL attributes
are integer epoch seconds; SigV4 uses the compact ISO 8601 basic format.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def now_millis() -> int:
    """Current wall clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_datetime(millis: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime.

    Args:
        millis: Unix timestamp in milliseconds

    Returns:
        datetime object in UTC
    """
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def to_amz_date(moment: Optional[datetime] = None) -> str:
    """Format a datetime as an AWS request timestamp (YYYYMMDDTHHMMSSZ).

    Args:
        moment: datetime to format (naive values are taken as UTC; uses current time if None)

    Returns:
        Compact ISO 8601 timestamp string
    """
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


def iso_week_bucket(millis: int) -> str:
    """Return the ISO week bucket (e.g. '2024-W07') an epoch millisecond timestamp falls in."""
    year, week, _ = to_datetime(millis).isocalendar()
    return f'{year}-W{week:02d}'
