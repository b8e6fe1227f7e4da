from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

BOARD_TIMEZONE = os.getenv("BOARD_TIMEZONE", "UTC").strip() or "UTC"

Clock = Callable[[], datetime]


def system_clock(tz_name: Optional[str] = None) -> Clock:
    """Return a clock producing aware datetimes in the board's timezone."""
    tz = ZoneInfo(tz_name or BOARD_TIMEZONE)

    def _now() -> datetime:
        return datetime.now(tz)

    return _now


def align(dt: datetime, now: datetime) -> datetime:
    """Express ``dt`` in the same timezone as ``now``.

    Naive values are taken to already be in that zone.
    """
    if now.tzinfo is None:
        return dt.replace(tzinfo=None) if dt.tzinfo is None else dt.astimezone().replace(tzinfo=None)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=now.tzinfo)
    return dt.astimezone(now.tzinfo)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_tomorrow(now: datetime) -> datetime:
    return start_of_day(now) + timedelta(days=1)


def is_overdue(scheduled_for: datetime, now: datetime) -> bool:
    """Past and not on today's calendar day."""
    return align(scheduled_for, now) < start_of_day(now)
