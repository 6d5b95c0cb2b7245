"""Task, completion and evaluator models"""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class TaskType(str, Enum):
    """Where a task (or a completion of it) comes from"""
    NORMAL = "normal"
    CHALLENGE = "challenge"
    HABIT = "habit"
    ROUTINE = "routine"
    USER_GENERATED = "user-generated"


class TaskStatus(str, Enum):
    """Task lifecycle status"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Task(BaseModel):
    """Task template (catalog entry, user submission, or embedded habit snapshot)"""
    id: str
    title: str
    description: str = ""
    categories: list[str] = Field(default_factory=list)
    category_xp: dict[str, int] = Field(default_factory=dict)  # category id -> 10..100
    tags: list[str] = Field(default_factory=list)
    type: TaskType = TaskType.NORMAL
    status: TaskStatus = TaskStatus.PENDING
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class ChallengeTaskView(Task):
    """Catalog task resolved for today's challenge list"""
    challenge_id: str
    challenge_title: str
    frequency: str


class CompletionRecord(BaseModel):
    """
    Append-only evidence of one completion event

    Same-day idempotency key: (task_id, type, calendar day), plus challenge_id
    for challenge completions and routine_id for routine completions.
    """
    task_id: str
    type: TaskType
    completed_at: datetime
    challenge_id: Optional[str] = None
    habit_id: Optional[str] = None
    routine_id: Optional[str] = None
    category_xp: dict[str, int] = Field(default_factory=dict)


class SafetyCheck(BaseModel):
    """Evaluator safety verdict"""
    passed: bool
    concerns: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class TaskEvaluation(BaseModel):
    """Structured judgement returned by the task evaluator"""
    is_valid: bool = Field(alias="isValid")
    categories: list[str] = Field(default_factory=list)
    category_xp: dict[str, float] = Field(default_factory=dict, alias="categoryXp")
    feedback: str = ""
    title: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    safety_check: Optional[SafetyCheck] = Field(default=None, alias="safetyCheck")

    model_config = {"populate_by_name": True}
