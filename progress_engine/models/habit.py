"""Habit models"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from progress_engine.models.task import Task


class CompletionDay(BaseModel):
    """One entry of a habit's completion history"""
    date: datetime
    completed: bool = True


class Habit(BaseModel):
    """66-day habit bound to a single embedded task"""
    id: str
    user_id: str
    title: str
    reason: str
    task: Task  # snapshot, type=habit
    streak: int = 0
    longest_streak: int = 0
    completed_today: bool = False
    completed_days: list[CompletionDay] = Field(default_factory=list)
    created_at: datetime
    established_at: Optional[datetime] = None
    established_bonus_awarded: bool = False  # bonus is paid once per habit, ever
    last_missed_date: Optional[datetime] = None

    @property
    def completed_count(self) -> int:
        return sum(1 for day in self.completed_days if day.completed)

    def last_completed_day(self) -> Optional[CompletionDay]:
        done = [day for day in self.completed_days if day.completed]
        return max(done, key=lambda day: day.date) if done else None


class MissedHabit(BaseModel):
    """Habit whose cadence broke, surfaced for a continue/restart decision"""
    habit_id: str
    title: str
    days_missed: int
    last_streak: int
    timestamp: datetime
