"""
Standardized Date/Time Handling Utilities

This module provides centralized functions for date/time operations to ensure:
1. All stored timestamps are timezone-aware UTC
2. Calendar boundaries (day/month/year rollover) are evaluated in the engine timezone
3. "Today" always comes from an injected Clock, never from a bare datetime.now()

CRITICAL RULES:
- Always store datetimes as UTC (use to_utc())
- Compare calendar days with calendar_date()/calendar_days_between(), never
  by dividing a timedelta by 24 hours
- Never mix naive and aware datetimes
"""

import logging
from datetime import datetime, date
from typing import Optional
from zoneinfo import ZoneInfo

from progress_engine.config import ENGINE_TIMEZONE

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC for storage

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        logger.warning(f"Received naive datetime, assuming UTC: {dt}")
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def calendar_date(dt: datetime, tz: Optional[ZoneInfo] = None) -> date:
    """
    Calendar date of a timestamp as seen in the engine timezone

    Args:
        dt: Timestamp (aware, or naive UTC)
        tz: Zone to evaluate the rollover in (defaults to ENGINE_TIMEZONE)
    """
    return to_utc(dt).astimezone(tz or ZoneInfo(ENGINE_TIMEZONE)).date()


def calendar_days_between(earlier: datetime, later: datetime, tz: Optional[ZoneInfo] = None) -> int:
    """
    Number of midnights crossed between two timestamps

    23:59 -> 00:01 next day is 1, not 0.
    """
    return (calendar_date(later, tz) - calendar_date(earlier, tz)).days


def same_day(a: datetime, b: datetime, tz: Optional[ZoneInfo] = None) -> bool:
    return calendar_date(a, tz) == calendar_date(b, tz)


def same_month(a: datetime, b: datetime, tz: Optional[ZoneInfo] = None) -> bool:
    da, db = calendar_date(a, tz), calendar_date(b, tz)
    return (da.year, da.month) == (db.year, db.month)


def same_year(a: datetime, b: datetime, tz: Optional[ZoneInfo] = None) -> bool:
    return calendar_date(a, tz).year == calendar_date(b, tz).year


class Clock:
    """
    Wall-clock time source

    Engines take a Clock instead of calling datetime.now() so that calendar
    boundaries can be pinned in tests.
    """

    def __init__(self, tz_name: str = ENGINE_TIMEZONE):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return now_utc()

    def today(self) -> date:
        return calendar_date(self.now(), self.tz)

    def local_date(self, dt: datetime) -> date:
        return calendar_date(dt, self.tz)

    def days_since(self, dt: datetime) -> int:
        """Calendar days between dt and now"""
        return calendar_days_between(dt, self.now(), self.tz)
