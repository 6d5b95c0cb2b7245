"""Shared routine models"""
from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel, Field

from progress_engine.models.task import Task


class RoutineTaskMeta(BaseModel):
    """Reference from a routine to a catalog task"""
    task_id: str
    days: list[int] = Field(default_factory=list)  # weekdays, 0 = Monday; empty = every day
    order: int = 0


class Routine(BaseModel):
    """
    One participant's copy of a shared routine

    Every participant holds a copy under the same id. Completions live in
    each participant's own completion history; the streak fields are
    per-participant.
    """
    id: str
    title: str
    description: str = ""
    created_by: str
    participants: list[str]
    tasks: list[RoutineTaskMeta]
    active: bool = True
    created_at: datetime
    streak: int = 0
    best_streak: int = 0
    last_completed: Optional[date] = None  # last day all scheduled tasks were done
    total_completions: int = 0

    def scheduled_on(self, day: date) -> list[RoutineTaskMeta]:
        return sorted(
            (meta for meta in self.tasks if not meta.days or day.weekday() in meta.days),
            key=lambda meta: meta.order
        )


class RoutineTaskView(Task):
    """Catalog task resolved for today's routine list"""
    routine_id: str
    routine_title: str
    participants: list[str]
    completed_by: list[str] = Field(default_factory=list)
    is_completed: bool = False  # by the requesting user
    all_completed: bool = False  # by every current participant
    streak: int = 0
