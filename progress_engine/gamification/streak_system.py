"""
Streak and Daily Rollover Calculations

Streaks are always derived from stored completion timestamps, evaluated on
calendar days in the engine timezone:
- D, D+1, D+2 -> streak 3
- D, D+2      -> streak 1 (the gap broke it)
- a streak whose last day is yesterday is still alive until today ends

The per-user "today" counters (today_completed_tasks, today_xp) are rolled
over lazily the first time a mutation happens on a new calendar day.
"""

from typing import Iterable, Optional
from datetime import date, timedelta
import logging

from progress_engine.models.progress import ProgressStats, UserProgress
from progress_engine.utils.datetime_helpers import Clock

logger = logging.getLogger(__name__)


def advance_streak(current: int, last_date: Optional[date], activity_date: date) -> int:
    """
    Streak value after an activity on activity_date

    Logic:
    - First activity ever: 1
    - Same day as the last activity: unchanged (already counted)
    - Next day: +1
    - Any bigger gap: back to 1
    """
    if last_date is None:
        return 1
    if last_date == activity_date:
        return max(current, 1)
    if last_date == activity_date - timedelta(days=1):
        return current + 1
    return 1


def calculate_streak(days: Iterable[date], today: date) -> int:
    """
    Length of the run of consecutive active days ending today

    If today has no activity yet the run ending yesterday still counts.
    """
    active = set(days)
    cursor = today if today in active else today - timedelta(days=1)
    streak = 0
    while cursor in active:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def longest_streak(days: Iterable[date]) -> int:
    """Longest run of consecutive active days anywhere in the history"""
    ordered = sorted(set(days))
    best = 0
    run = 0
    previous = None
    for day in ordered:
        run = run + 1 if previous is not None and day == previous + timedelta(days=1) else 1
        best = max(best, run)
        previous = day
    return best


def roll_daily_stats(stats: ProgressStats, today: date) -> bool:
    """
    Reset the per-day counters when the calendar day changed

    Returns:
        True if a rollover happened
    """
    if stats.today == today:
        return False
    stats.today_completed_tasks = []
    stats.today_xp = 0
    stats.today = today
    return True


def record_activity(progress: UserProgress, clock: Clock) -> int:
    """
    Refresh the user's overall activity streak from completion history

    Call after appending a CompletionRecord inside a mutation.

    Returns:
        The current streak
    """
    today = clock.today()
    active_days = [clock.local_date(record.completed_at) for record in progress.completed_tasks]
    progress.stats.current_streak = calculate_streak(active_days, today)
    progress.stats.longest_streak = max(progress.stats.longest_streak, progress.stats.current_streak)
    return progress.stats.current_streak
