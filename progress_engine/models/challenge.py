"""Challenge template and per-user instance models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class Frequency(str, Enum):
    """How often a challenge task has to be done"""
    DAILY = "daily"
    WEEKLY = "weekly"


class ChallengeTaskMeta(BaseModel):
    """Reference from a challenge to a catalog task"""
    task_id: str
    frequency: Frequency = Frequency.DAILY
    days: Optional[list[str]] = None
    time_of_day: Optional[str] = None


class ChallengeTemplate(BaseModel):
    """Read-only catalog challenge"""
    id: str
    title: str
    description: str = ""
    tasks: list[ChallengeTaskMeta]
    duration: int  # days
    difficulty: str = "medium"
    category: list[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class TaskProgress(BaseModel):
    """Per-task progress inside one challenge attempt"""
    task_id: str
    completed_dates: list[datetime] = Field(default_factory=list)
    streak_count: int = 0
    last_completed: Optional[datetime] = None


class ChallengeInstance(ChallengeTemplate):
    """A user's run of a challenge (embeds the template fields)"""
    start_date: datetime
    active: bool = True
    progress: int = 0  # 0..100, days elapsed / duration
    task_progress: list[TaskProgress] = Field(default_factory=list)
    task_completions: dict[str, list[datetime]] = Field(default_factory=dict)
    attempts: int = 1

    def progress_for(self, task_id: str) -> Optional[TaskProgress]:
        for entry in self.task_progress:
            if entry.task_id == task_id:
                return entry
        return None
