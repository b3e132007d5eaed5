"""
utils/time_utils.py

Purpose: Time helpers

- "Today" in the bot's timezone
- Period ranges for statistics (today, week, month)
- Week boundaries for weekly challenges
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings

PERIOD_DAYS = {"today": 1, "week": 7, "month": 30}


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.SCHEDULER_TIMEZONE)


def now_local(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(local_tz())


def today_local(now: Optional[datetime] = None) -> date:
    return now_local(now).date()


def day_start(day: date) -> datetime:
    """Local midnight of `day`, as an aware UTC datetime for store queries."""
    return datetime.combine(day, time.min, tzinfo=local_tz()).astimezone(timezone.utc)


def period_range(period: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime, int]:
    """
    Returns (start, end, days) in UTC for a statistics period.

    "today" starts at local midnight; "week" and "month" cover the last 7
    and 30 local days including today.

    Raises:
        ValueError: For an unknown period
    """
    if period not in PERIOD_DAYS:
        raise ValueError(f"Unknown period: {period}")
    days = PERIOD_DAYS[period]
    today = today_local(now)
    start = day_start(today - timedelta(days=days - 1))
    end = day_start(today + timedelta(days=1))
    return start, end, days


def week_start(now: Optional[datetime] = None) -> date:
    """Monday of the current local week."""
    today = today_local(now)
    return today - timedelta(days=today.weekday())
