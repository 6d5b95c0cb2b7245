"""Per-user progress aggregate"""
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field

from progress_engine.models.category import CATEGORY_IDS
from progress_engine.models.challenge import ChallengeInstance
from progress_engine.models.goal import Goal, GoalStats
from progress_engine.models.habit import Habit, MissedHabit
from progress_engine.models.routine import Routine
from progress_engine.models.task import CompletionRecord, Task


class CategoryLevel(BaseModel):
    level: int = 1
    xp: int = 0


class OverallLevel(BaseModel):
    level: int = 1
    xp: int = 0
    prestige: int = 0


class ProgressStats(BaseModel):
    total_tasks_completed: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    today_completed_tasks: list[str] = Field(default_factory=list)
    challenges_completed: list[str] = Field(default_factory=list)
    today_xp: int = 0
    today: Optional[date] = None  # day that today_* fields refer to


def _initial_categories() -> dict[str, CategoryLevel]:
    return {category_id: CategoryLevel() for category_id in CATEGORY_IDS}


class UserProgress(BaseModel):
    """
    The one shared mutable record per user

    Only ever changed through ProgressStore.mutate(); `version` is owned by
    the store and bumped on every successful write.
    """
    user_id: str
    version: int = 0
    categories: dict[str, CategoryLevel] = Field(default_factory=_initial_categories)
    overall: OverallLevel = Field(default_factory=OverallLevel)
    completed_tasks: list[CompletionRecord] = Field(default_factory=list)
    active_tasks: list[str] = Field(default_factory=list)
    user_generated_tasks: list[Task] = Field(default_factory=list)
    habits: dict[str, Habit] = Field(default_factory=dict)
    challenges: list[ChallengeInstance] = Field(default_factory=list)
    routines: dict[str, Routine] = Field(default_factory=dict)
    goals: dict[str, Goal] = Field(default_factory=dict)
    goal_stats: GoalStats = Field(default_factory=GoalStats)
    missed_habits: list[MissedHabit] = Field(default_factory=list)
    stats: ProgressStats = Field(default_factory=ProgressStats)

    def find_challenge(self, challenge_id: str) -> Optional[ChallengeInstance]:
        for instance in self.challenges:
            if instance.id == challenge_id:
                return instance
        return None

    def find_user_task(self, task_id: str) -> Optional[Task]:
        for task in self.user_generated_tasks:
            if task.id == task_id:
                return task
        return None
