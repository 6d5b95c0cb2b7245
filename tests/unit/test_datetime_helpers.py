"""Unit tests for Datetime Helpers (progress_engine/utils/datetime_helpers.py)"""
import pytest
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from progress_engine.utils.datetime_helpers import (
    Clock,
    calendar_date,
    calendar_days_between,
    now_utc,
    same_day,
    same_month,
    same_year,
    to_utc,
)

UTC = timezone.utc
NEW_YORK = ZoneInfo("America/New_York")


# ============================================================================
# UTC Time Tests
# ============================================================================

def test_now_utc_is_aware_utc():
    result = now_utc()
    assert result.utcoffset() == timedelta(0)


def test_to_utc_converts_aware():
    local = datetime(2025, 3, 10, 20, 0, tzinfo=NEW_YORK)
    assert to_utc(local) == datetime(2025, 3, 11, 0, 0, tzinfo=UTC)


def test_to_utc_assumes_naive_is_utc():
    assert to_utc(datetime(2025, 3, 10, 12, 0)) == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


# ============================================================================
# Calendar Boundary Tests
# ============================================================================

def test_calendar_date_respects_zone():
    instant = datetime(2025, 3, 11, 2, 0, tzinfo=UTC)
    assert calendar_date(instant, ZoneInfo("UTC")) == date(2025, 3, 11)
    assert calendar_date(instant, NEW_YORK) == date(2025, 3, 10)


@pytest.mark.parametrize("earlier,later,days", [
    (datetime(2025, 3, 10, 23, 59, tzinfo=UTC), datetime(2025, 3, 11, 0, 1, tzinfo=UTC), 1),
    (datetime(2025, 3, 10, 0, 1, tzinfo=UTC), datetime(2025, 3, 10, 23, 59, tzinfo=UTC), 0),
    (datetime(2025, 3, 10, 9, 0, tzinfo=UTC), datetime(2025, 3, 13, 8, 0, tzinfo=UTC), 3),
])
def test_calendar_days_between_counts_midnights(earlier, later, days):
    assert calendar_days_between(earlier, later, ZoneInfo("UTC")) == days


def test_same_unit_helpers():
    tz = ZoneInfo("UTC")
    a = datetime(2025, 3, 31, 23, 0, tzinfo=UTC)
    b = datetime(2025, 4, 1, 1, 0, tzinfo=UTC)
    assert not same_day(a, b, tz)
    assert not same_month(a, b, tz)
    assert same_year(a, b, tz)
    assert same_day(a, a + timedelta(minutes=30), tz)


# ============================================================================
# Clock Tests
# ============================================================================

def test_clock_now_is_aware():
    assert Clock("UTC").now().tzinfo is not None


def test_clock_days_since_uses_its_zone(clock):
    clock.set(datetime(2025, 3, 11, 3, 0, tzinfo=UTC))
    assert clock.days_since(datetime(2025, 3, 10, 23, 0, tzinfo=UTC)) == 1

    eastern = Clock("America/New_York")
    # 23:00 and 03:00 UTC the next day are the same evening in New York
    assert calendar_days_between(
        datetime(2025, 3, 10, 23, 0, tzinfo=UTC), datetime(2025, 3, 11, 3, 0, tzinfo=UTC), eastern.tz
    ) == 0


def test_clock_today(clock, start_time):
    assert clock.today() == start_time.date()
    clock.advance(hours=15)
    assert clock.today() == date(2025, 3, 11)
