"""
Task Completion Service

Picks up catalog (or the user's own) tasks and records their completion.
A task completes at most once per calendar day; completing it again the
same day returns the first record and awards nothing.
"""

import logging
from typing import List, Optional

from progress_engine.db.catalog import TaskCatalog
from progress_engine.exceptions import NotFoundError
from progress_engine.gamification.streak_system import record_activity, roll_daily_stats
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.models.progress import UserProgress
from progress_engine.models.task import CompletionRecord, Task, TaskStatus, TaskType
from progress_engine.resilience.metrics import record_completion
from progress_engine.utils.datetime_helpers import Clock

logger = logging.getLogger(__name__)


class TaskCompletionService:
    """Active task list and exactly-once daily completions"""

    def __init__(self, store, ledger: XPLedger, catalog: TaskCatalog, clock: Optional[Clock] = None):
        self.store = store
        self.ledger = ledger
        self.catalog = catalog
        self.clock = clock or Clock()

    async def _resolve(self, user_id: str, task_id: str, operation: str) -> Task:
        task = await self.catalog.get_task(task_id)
        if task is not None:
            return task
        progress = await self.store.get(user_id)
        task = progress.find_user_task(task_id)
        if task is not None:
            return task
        raise NotFoundError(
            f"Task {task_id} does not exist",
            record_type="Task",
            record_id=task_id,
            user_id=user_id,
            operation=operation
        )

    def _completed_today(self, progress: UserProgress, task_id: str) -> Optional[CompletionRecord]:
        today = self.clock.today()
        for record in progress.completed_tasks:
            if (
                record.task_id == task_id
                and record.type == TaskType.NORMAL
                and self.clock.local_date(record.completed_at) == today
            ):
                return record
        return None

    async def add_to_active(self, user_id: str, task_id: str) -> List[str]:
        """
        Put a task on the user's active list (no-op if already there)

        Returns:
            The active task ids
        """
        await self._resolve(user_id, task_id, "add_active_task")

        def _add(progress: UserProgress) -> List[str]:
            if task_id not in progress.active_tasks:
                progress.active_tasks.append(task_id)
            return list(progress.active_tasks)

        active = await self.store.mutate(user_id, _add)
        logger.info(f"Task {task_id} active for user {user_id}")
        return active

    async def get_active_tasks(self, user_id: str) -> List[Task]:
        """Active tasks resolved to Task objects; ids that no longer resolve are skipped"""
        progress = await self.store.get(user_id)
        tasks = []
        for task_id in progress.active_tasks:
            task = await self.catalog.get_task(task_id) or progress.find_user_task(task_id)
            if task is None:
                logger.warning(f"Active task {task_id} of user {user_id} no longer exists")
                continue
            tasks.append(task)
        return tasks

    async def complete(self, user_id: str, task_id: str) -> CompletionRecord:
        """
        Complete a task for today and award its category XP

        Returns:
            The completion record (the existing one when already completed today)

        Raises:
            NotFoundError: unknown task
            ConflictError: concurrent updates kept winning
        """
        task = await self._resolve(user_id, task_id, "complete_task")
        now = self.clock.now()

        def _complete(progress: UserProgress) -> tuple[CompletionRecord, bool]:
            existing = self._completed_today(progress, task_id)
            if existing is not None:
                return existing, False

            roll_daily_stats(progress.stats, self.clock.today())
            record = CompletionRecord(
                task_id=task_id,
                type=TaskType.NORMAL,
                completed_at=now,
                category_xp=dict(task.category_xp),
            )
            progress.completed_tasks.append(record)
            progress.active_tasks = [active for active in progress.active_tasks if active != task_id]
            progress.stats.today_completed_tasks.append(task_id)
            progress.stats.total_tasks_completed += 1

            own = progress.find_user_task(task_id)
            if own is not None:
                own.completed = True
                own.completed_at = now
                own.status = TaskStatus.COMPLETED

            award = self.ledger.apply(progress, task.category_xp)
            record.category_xp = dict(award.awarded)
            record_activity(progress, self.clock)
            return record, True

        record, recorded = await self.store.mutate(user_id, _complete)
        if recorded:
            record_completion(TaskType.NORMAL.value)
            logger.info(f"User {user_id} completed task {task_id} (+{sum(record.category_xp.values())} XP)")
        else:
            logger.info(f"Task {task_id} already completed today by user {user_id}")
        return record

    async def delete(self, user_id: str, task_id: str) -> None:
        """
        Remove a task from the active list and the user's own tasks

        Completion history and awarded XP are kept.
        """
        def _delete(progress: UserProgress) -> None:
            referenced = task_id in progress.active_tasks or progress.find_user_task(task_id) is not None
            if not referenced:
                raise NotFoundError(
                    f"Task {task_id} is not on the user's lists",
                    record_type="Task",
                    record_id=task_id,
                    user_id=user_id,
                    operation="delete_task"
                )
            progress.active_tasks = [active for active in progress.active_tasks if active != task_id]
            progress.user_generated_tasks = [t for t in progress.user_generated_tasks if t.id != task_id]

        await self.store.mutate(user_id, _delete)
        logger.info(f"Deleted task {task_id} for user {user_id}")
