"""Goal models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class GoalTimeframe(str, Enum):
    """Calendar unit a goal belongs to"""
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class GoalStatus(str, Enum):
    """Goal lifecycle status (archived is terminal)"""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ReflectionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class GoalStep(BaseModel):
    id: str
    description: str
    is_completed: bool = False
    completed_at: Optional[datetime] = None


class Reflection(BaseModel):
    content: str
    outcome: ReflectionOutcome
    last_updated: datetime


class Goal(BaseModel):
    """Timeframe-scoped goal"""
    id: str
    user_id: str
    description: str
    timeframe: GoalTimeframe = GoalTimeframe.DAILY
    status: GoalStatus = GoalStatus.NOT_STARTED
    progress: int = 0  # 0..100
    measurable: Optional[str] = None
    steps: Optional[list[GoalStep]] = None
    category: Optional[str] = None
    parent_goal_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    reflection: Optional[Reflection] = None


class GoalTemplate(BaseModel):
    """Reusable goal blueprint"""
    id: str
    title: str
    description: str
    timeframe: GoalTimeframe = GoalTimeframe.DAILY
    category: Optional[str] = None
    default_steps: list[str] = Field(default_factory=list)


class GoalStats(BaseModel):
    total_completed: int = 0
    completion_rate: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    last_updated: Optional[datetime] = None
