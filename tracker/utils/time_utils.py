"""
Time helpers for sync bookkeeping and daily snapshots.

All timestamps are stored as naive UTC datetimes. Calendar days for snapshots
are resolved in the configured snapshot timezone.
"""

from datetime import date, datetime, timezone
import math

import pytz

from tracker.config import Config


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def snapshot_day(moment: datetime, timezone_name: str = None) -> date:
    """Calendar day of a naive UTC timestamp in the snapshot timezone."""
    tz = pytz.timezone(timezone_name or Config.SNAPSHOT_TIMEZONE)
    return pytz.utc.localize(moment).astimezone(tz).date()


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up."""
    return int(math.floor(value + 0.5))
