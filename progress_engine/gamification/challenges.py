"""
Challenge Engine

A challenge is a catalog template of tasks with a duration in days. Joining
creates a per-user instance; every task completion inside it is recorded
once per (task, challenge, day), awards the task's category XP, and
re-evaluates whether the whole challenge is done:
- daily tasks need one completion per day of the duration
- weekly tasks need one completion per started week of the duration

Failed attempts (a task left untouched for more than a day) are reported,
never resolved automatically; the user resets or quits.
"""

from math import ceil
from typing import List, Optional
import logging

from progress_engine.db.catalog import ChallengeCatalog, TaskCatalog
from progress_engine.exceptions import ChallengeAlreadyActiveError, NotFoundError
from progress_engine.gamification.streak_system import record_activity, roll_daily_stats
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.models.challenge import ChallengeInstance, Frequency, TaskProgress
from progress_engine.models.progress import UserProgress
from progress_engine.models.task import ChallengeTaskView, CompletionRecord, TaskType
from progress_engine.resilience.metrics import record_completion
from progress_engine.utils.datetime_helpers import Clock

logger = logging.getLogger(__name__)


def required_completions(frequency: Frequency, duration: int) -> int:
    if frequency == Frequency.WEEKLY:
        return ceil(duration / 7)
    return duration


def is_fully_completed(instance: ChallengeInstance) -> bool:
    """Every templated task has reached its required completion count"""
    if not instance.tasks:
        return False
    for meta in instance.tasks:
        entry = instance.progress_for(meta.task_id)
        done = len(entry.completed_dates) if entry else 0
        if done < required_completions(meta.frequency, instance.duration):
            return False
    return True


class ChallengeEngine:
    """Join, run, reset and finish multi-day challenges"""

    def __init__(
        self,
        store,
        ledger: XPLedger,
        challenges: ChallengeCatalog,
        tasks: TaskCatalog,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.ledger = ledger
        self.challenges = challenges
        self.tasks = tasks
        self.clock = clock or Clock()

    def _active(self, progress: UserProgress, challenge_id: str, operation: str) -> ChallengeInstance:
        instance = progress.find_challenge(challenge_id)
        if instance is None or not instance.active:
            raise NotFoundError(
                f"No active challenge {challenge_id}",
                record_type="Challenge",
                record_id=challenge_id,
                user_id=progress.user_id,
                operation=operation
            )
        return instance

    def _instance(self, progress: UserProgress, challenge_id: str, operation: str) -> ChallengeInstance:
        instance = progress.find_challenge(challenge_id)
        if instance is None:
            raise NotFoundError(
                f"Challenge {challenge_id} not joined",
                record_type="Challenge",
                record_id=challenge_id,
                user_id=progress.user_id,
                operation=operation
            )
        return instance

    def _completed_today(self, progress: UserProgress, task_id: str, challenge_id: str) -> bool:
        today = self.clock.today()
        return any(
            record.type == TaskType.CHALLENGE
            and record.task_id == task_id
            and record.challenge_id == challenge_id
            and self.clock.local_date(record.completed_at) == today
            for record in progress.completed_tasks
        )

    def calculate_progress(self, instance: ChallengeInstance) -> int:
        """Days elapsed since the attempt started, as a share of the duration (0..100)"""
        if instance.duration <= 0:
            return 100
        elapsed = self.clock.days_since(instance.start_date)
        return max(0, min(round(elapsed / instance.duration * 100), 100))

    async def join(self, user_id: str, challenge_id: str) -> ChallengeInstance:
        """
        Start a challenge

        Raises:
            NotFoundError: unknown challenge template
            ChallengeAlreadyActiveError: the user is already running it
        """
        template = await self.challenges.get_challenge(challenge_id)
        if template is None:
            raise NotFoundError(
                f"Challenge {challenge_id} does not exist",
                record_type="Challenge",
                record_id=challenge_id,
                user_id=user_id,
                operation="join_challenge"
            )

        now = self.clock.now()
        today = self.clock.today()

        def _join(progress: UserProgress) -> ChallengeInstance:
            current = progress.find_challenge(challenge_id)
            if current is not None and current.active:
                raise ChallengeAlreadyActiveError(existing=current, user_id=user_id, operation="join_challenge")

            instance = ChallengeInstance(
                **template.model_dump(),
                start_date=now,
                active=True,
                progress=0,
                attempts=1,
            )
            progress.challenges = [c for c in progress.challenges if c.id != challenge_id]
            progress.challenges.append(instance)

            # completions of an earlier run today must not hide today's tasks
            progress.completed_tasks = [
                record for record in progress.completed_tasks
                if not (
                    record.type == TaskType.CHALLENGE
                    and record.challenge_id == challenge_id
                    and self.clock.local_date(record.completed_at) == today
                )
            ]
            return instance.model_copy(deep=True)

        instance = await self.store.mutate(user_id, _join)
        logger.info(f"User {user_id} joined challenge {challenge_id}")
        return instance

    async def get_user_challenges(self, user_id: str) -> List[ChallengeInstance]:
        progress = await self.store.get(user_id)
        active = []
        for instance in progress.challenges:
            if not instance.active:
                continue
            instance.progress = self.calculate_progress(instance)
            active.append(instance)
        return active

    async def get_todays_tasks(self, user_id: str) -> List[ChallengeTaskView]:
        """Challenge tasks still open today, across all active challenges"""
        progress = await self.store.get(user_id)
        views = []
        for instance in progress.challenges:
            if not instance.active:
                continue
            for meta in instance.tasks:
                if self._completed_today(progress, meta.task_id, instance.id):
                    continue
                task = await self.tasks.get_task(meta.task_id)
                if task is None:
                    logger.warning(f"Challenge {instance.id} references missing task {meta.task_id}")
                    continue
                views.append(ChallengeTaskView(
                    **task.model_dump(exclude={"type"}),
                    type=TaskType.CHALLENGE,
                    challenge_id=instance.id,
                    challenge_title=instance.title,
                    frequency=meta.frequency.value,
                ))
        return views

    async def complete_task(self, user_id: str, challenge_id: str, task_id: str) -> ChallengeInstance:
        """
        Record a challenge task completion for today

        Completing the same task in the same challenge twice on one day is a
        no-op.

        Raises:
            NotFoundError: no active instance, or task not part of the challenge
        """
        task = await self.tasks.get_task(task_id)
        category_xp = dict(task.category_xp) if task else {}
        now = self.clock.now()

        def _complete(progress: UserProgress) -> tuple[ChallengeInstance, bool]:
            instance = self._active(progress, challenge_id, "complete_challenge_task")
            if not any(meta.task_id == task_id for meta in instance.tasks):
                raise NotFoundError(
                    f"Task {task_id} is not part of challenge {challenge_id}",
                    record_type="Task",
                    record_id=task_id,
                    user_id=user_id,
                    operation="complete_challenge_task"
                )

            if self._completed_today(progress, task_id, challenge_id):
                return instance.model_copy(deep=True), False

            roll_daily_stats(progress.stats, self.clock.today())

            entry = instance.progress_for(task_id)
            if entry is None:
                entry = TaskProgress(task_id=task_id)
                instance.task_progress.append(entry)
            entry.completed_dates.append(now)
            entry.streak_count += 1
            entry.last_completed = now
            instance.task_completions.setdefault(task_id, []).append(now)

            progress.completed_tasks.append(CompletionRecord(
                task_id=task_id,
                type=TaskType.CHALLENGE,
                completed_at=now,
                challenge_id=challenge_id,
                category_xp=category_xp,
            ))
            progress.stats.total_tasks_completed += 1
            progress.stats.today_completed_tasks.append(task_id)
            self.ledger.apply(progress, category_xp)
            record_activity(progress, self.clock)

            instance.progress = self.calculate_progress(instance)
            if is_fully_completed(instance) and challenge_id not in progress.stats.challenges_completed:
                progress.stats.challenges_completed.append(challenge_id)
                logger.info(f"User {user_id} fully completed challenge {challenge_id}")

            return instance.model_copy(deep=True), True

        instance, recorded = await self.store.mutate(user_id, _complete)
        if recorded:
            record_completion(TaskType.CHALLENGE.value)
            logger.info(f"User {user_id} completed task {task_id} in challenge {challenge_id}")
        return instance

    async def update_challenge_progress(self, user_id: str, challenge_id: str) -> int:
        """Persist the day-based progress of one challenge"""
        def _update(progress: UserProgress) -> int:
            instance = self._active(progress, challenge_id, "update_challenge_progress")
            instance.progress = self.calculate_progress(instance)
            return instance.progress

        return await self.store.mutate(user_id, _update)

    async def check_failed_challenges(self, user_id: str) -> List[ChallengeInstance]:
        """Active challenges with a task not completed for more than a day"""
        progress = await self.store.get(user_id)
        failed = []
        for instance in progress.challenges:
            if not instance.active:
                continue
            if any(
                entry.last_completed is not None and self.clock.days_since(entry.last_completed) > 1
                for entry in instance.task_progress
            ):
                failed.append(instance)
        if failed:
            logger.info(f"User {user_id} has {len(failed)} failed challenge attempt(s)")
        return failed

    async def reset_challenge_progress(self, user_id: str, challenge_id: str) -> ChallengeInstance:
        """Start a new attempt of a challenge the user is already in"""
        now = self.clock.now()

        def _reset(progress: UserProgress) -> ChallengeInstance:
            instance = self._instance(progress, challenge_id, "reset_challenge")
            instance.task_progress = []
            instance.task_completions = {}
            instance.progress = 0
            instance.start_date = now
            instance.attempts += 1
            return instance.model_copy(deep=True)

        instance = await self.store.mutate(user_id, _reset)
        logger.info(f"User {user_id} restarted challenge {challenge_id} (attempt {instance.attempts})")
        return instance

    async def _finish(self, user_id: str, challenge_id: str, operation: str, count_task: bool) -> None:
        def _remove(progress: UserProgress) -> None:
            self._instance(progress, challenge_id, operation)
            progress.challenges = [c for c in progress.challenges if c.id != challenge_id]
            if challenge_id not in progress.stats.challenges_completed:
                progress.stats.challenges_completed.append(challenge_id)
            if count_task:
                progress.stats.total_tasks_completed += 1

        await self.store.mutate(user_id, _remove)

    async def quit_challenge(self, user_id: str, challenge_id: str) -> None:
        await self._finish(user_id, challenge_id, "quit_challenge", count_task=False)
        logger.info(f"User {user_id} quit challenge {challenge_id}")

    async def complete_challenge(self, user_id: str, challenge_id: str) -> None:
        await self._finish(user_id, challenge_id, "complete_challenge", count_task=True)
        logger.info(f"User {user_id} completed challenge {challenge_id}")
