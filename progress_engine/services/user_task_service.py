"""
User-Generated Task Service

Users can submit their own tasks. A submission only becomes a task after:
1. The evaluator judges it valid and safe (and assigns categories and XP)
2. Its title is not a near-duplicate of a catalog task or one of the
   user's own tasks

Nothing is written unless every step passes.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from progress_engine.agent.task_evaluator import TaskEvaluator
from progress_engine.db.catalog import TaskCatalog
from progress_engine.exceptions import DuplicateError, SafetyRejectedError, ValidationError
from progress_engine.models.progress import UserProgress
from progress_engine.models.task import Task, TaskEvaluation, TaskStatus, TaskType
from progress_engine.utils.datetime_helpers import Clock
from progress_engine.utils.ids import IdGenerator
from progress_engine.utils.similarity import find_duplicate

logger = logging.getLogger(__name__)


class CreatedTask(BaseModel):
    """A newly created user task together with the evaluator's feedback"""
    task: Task
    feedback: str = ""


class UserGeneratedTaskService:
    """Evaluator-gated creation of user tasks"""

    def __init__(
        self,
        store,
        evaluator: TaskEvaluator,
        catalog: TaskCatalog,
        clock: Optional[Clock] = None,
        ids: Optional[IdGenerator] = None
    ):
        self.store = store
        self.evaluator = evaluator
        self.catalog = catalog
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()

    def _check_evaluation(self, user_id: str, evaluation: TaskEvaluation) -> None:
        safety = evaluation.safety_check
        if safety is not None and not safety.passed:
            raise SafetyRejectedError(
                concerns=safety.concerns,
                suggestions=safety.suggestions,
                feedback=evaluation.feedback,
                user_id=user_id,
                operation="create_user_task"
            )
        if not evaluation.is_valid:
            raise ValidationError(
                evaluation.feedback or "Task was not accepted",
                field="task",
                user_id=user_id,
                operation="create_user_task"
            )
        if safety is None:
            raise SafetyRejectedError(
                "Evaluator returned no safety verdict",
                feedback=evaluation.feedback,
                user_id=user_id,
                operation="create_user_task"
            )

    async def create_task(self, user_id: str, title: str, description: str = "") -> CreatedTask:
        """
        Evaluate and store a user-submitted task

        Raises:
            ValidationError: blank title or the evaluator rejected the task
            SafetyRejectedError: the safety check failed
            DuplicateError: a catalog or own task has a near-identical title
            RateLimitedError: the evaluator asked us to back off
        """
        if not title or not title.strip():
            raise ValidationError(
                "Task title is required",
                field="title",
                value=title,
                user_id=user_id,
                operation="create_user_task"
            )

        # fail fast for unknown users before spending an evaluator call
        await self.store.get(user_id)

        evaluation = await self.evaluator.evaluate(title.strip(), description.strip())
        self._check_evaluation(user_id, evaluation)

        final_title = (evaluation.title or title).strip()
        catalog_tasks = await self.catalog.list_tasks()
        now = self.clock.now()
        task_id = self.ids.new_id("task")

        def _create(progress: UserProgress) -> Task:
            duplicate = find_duplicate(final_title, catalog_tasks, progress.user_generated_tasks)
            if duplicate is not None:
                raise DuplicateError(
                    f"Task '{final_title}' duplicates '{duplicate.title}'",
                    existing=duplicate,
                    user_id=user_id,
                    operation="create_user_task"
                )
            task = Task(
                id=task_id,
                title=final_title,
                description=(evaluation.description or description).strip(),
                categories=list(evaluation.categories),
                category_xp={category: int(xp) for category, xp in evaluation.category_xp.items()},
                tags=list(evaluation.tags),
                type=TaskType.USER_GENERATED,
                status=TaskStatus.PENDING,
                completed=False,
                created_by=user_id,
                created_at=now,
            )
            progress.user_generated_tasks.append(task)
            return task

        task = await self.store.mutate(user_id, _create)
        logger.info(f"User {user_id} created task {task.id} ('{task.title}')")
        return CreatedTask(task=task, feedback=evaluation.feedback)
