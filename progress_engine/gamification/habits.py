"""
66-Day Habit Engine

A habit wraps one task the user repeats daily. Each calendar day can be
completed once; consecutive days build the streak and 66 completed days
establish the habit, which pays a one-time bonus to every category.

Missed days are detected on calendar boundaries (engine timezone): more
than one calendar day since the last completion breaks the streak and
surfaces the habit in missed_habits so the user can choose to continue or
restart.
"""

from typing import List, Optional
import logging

from progress_engine.config import HABIT_ESTABLISHED_BONUS_XP, HABIT_ESTABLISHMENT_DAYS
from progress_engine.exceptions import DuplicateHabitError, NotFoundError, ValidationError
from progress_engine.gamification.streak_system import record_activity, roll_daily_stats
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.models.category import CATEGORY_IDS
from progress_engine.models.habit import CompletionDay, Habit, MissedHabit
from progress_engine.models.progress import UserProgress
from progress_engine.models.task import CompletionRecord, Task, TaskStatus, TaskType
from progress_engine.resilience.metrics import record_completion
from progress_engine.utils.datetime_helpers import Clock
from progress_engine.utils.ids import IdGenerator

logger = logging.getLogger(__name__)


def completion_percentage(habit: Habit) -> float:
    """Share of the 66 days completed, 0..100"""
    return min(habit.completed_count / HABIT_ESTABLISHMENT_DAYS * 100, 100.0)


def remaining_days(habit: Habit) -> int:
    return max(HABIT_ESTABLISHMENT_DAYS - habit.completed_count, 0)


class HabitEngine:
    """Create, complete and maintain 66-day habits"""

    def __init__(
        self,
        store,
        ledger: XPLedger,
        clock: Optional[Clock] = None,
        ids: Optional[IdGenerator] = None
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()

    def _find_by_task(self, progress: UserProgress, task_id: str) -> Habit:
        for habit in progress.habits.values():
            if habit.task.id == task_id:
                return habit
        raise NotFoundError(
            f"No habit for task {task_id}",
            record_type="Habit",
            record_id=task_id,
            user_id=progress.user_id,
            operation="complete_habit"
        )

    def _get(self, progress: UserProgress, habit_id: str) -> Habit:
        habit = progress.habits.get(habit_id)
        if habit is None:
            raise NotFoundError(
                f"Habit {habit_id} not found",
                record_type="Habit",
                record_id=habit_id,
                user_id=progress.user_id
            )
        return habit

    def _days_since_last_completion(self, habit: Habit) -> Optional[int]:
        last = habit.last_completed_day()
        if last is None:
            return None
        return self.clock.days_since(last.date)

    def _completed_on_today(self, habit: Habit) -> bool:
        today = self.clock.today()
        return any(day.completed and self.clock.local_date(day.date) == today for day in habit.completed_days)

    def _clear_daily_flags(self, habit: Habit) -> None:
        habit.completed_today = False
        habit.task.completed = False
        habit.task.completed_at = None
        habit.task.status = TaskStatus.PENDING

    def _mark_missed(
        self,
        progress: UserProgress,
        habit: Habit,
        days_since: int,
        surface: bool = True
    ) -> Optional[MissedHabit]:
        """
        Break the streak of a habit whose cadence lapsed

        Completion history is kept. A lapse that was already handled (an
        earlier check, or the user chose to continue) is not reset again.

        Returns:
            The missed-habit entry, or None when there is nothing to surface
        """
        existing = next((m for m in progress.missed_habits if m.habit_id == habit.id), None)
        already_handled = (
            habit.last_missed_date is not None
            and habit.last_missed_date >= habit.last_completed_day().date
        )

        if already_handled:
            if existing is not None:
                existing.days_missed = days_since - 1
            return existing

        now = self.clock.now()
        missed = MissedHabit(
            habit_id=habit.id,
            title=habit.title,
            days_missed=days_since - 1,
            last_streak=habit.streak,
            timestamp=now,
        )
        logger.info(
            f"Habit {habit.id} of user {progress.user_id} missed {days_since - 1} day(s); "
            f"streak {habit.streak} reset"
        )
        habit.streak = 0
        habit.completed_today = False
        habit.established_at = None
        habit.last_missed_date = now

        if surface:
            progress.missed_habits = [m for m in progress.missed_habits if m.habit_id != habit.id]
            progress.missed_habits.append(missed)
        return missed

    async def create(
        self,
        user_id: str,
        title: str,
        reason: str,
        task: Optional[Task]
    ) -> Habit:
        """
        Create a new habit

        Raises:
            ValidationError: missing motivation text or task
            DuplicateHabitError: same title (any case) on the same task
        """
        if not reason or not reason.strip():
            raise ValidationError(
                "Please provide a reason for building this habit",
                field="reason",
                value=reason,
                user_id=user_id,
                operation="create_habit"
            )
        if task is None:
            raise ValidationError(
                "Please select a task for this habit",
                field="task",
                user_id=user_id,
                operation="create_habit"
            )

        habit_title = (title or task.title).strip()
        now = self.clock.now()
        habit_id = self.ids.new_id("habit")

        def _create(progress: UserProgress) -> Habit:
            for existing in progress.habits.values():
                if existing.title.lower() == habit_title.lower() and existing.task.id == task.id:
                    raise DuplicateHabitError(existing=existing, user_id=user_id, operation="create_habit")

            habit_task = task.model_copy(deep=True, update={
                "type": TaskType.HABIT,
                "completed": False,
                "completed_at": None,
                "status": TaskStatus.PENDING,
                "tags": sorted(set(task.tags) | {"habit"}),
            })
            habit = Habit(
                id=habit_id,
                user_id=user_id,
                title=habit_title,
                reason=reason.strip(),
                task=habit_task,
                created_at=now,
            )
            progress.habits[habit.id] = habit
            return habit

        habit = await self.store.mutate(user_id, _create)
        logger.info(f"Created habit {habit.id} ('{habit.title}') for user {user_id}")
        return habit

    async def get_habits(self, user_id: str) -> List[Habit]:
        progress = await self.store.get(user_id)
        return sorted(progress.habits.values(), key=lambda habit: habit.created_at)

    async def get_todays_habit_tasks(self, user_id: str) -> List[Task]:
        """Embedded tasks of every habit still to do today"""
        tasks = []
        for habit in await self.get_habits(user_id):
            if self._completed_on_today(habit):
                continue
            task = habit.task.model_copy(deep=True)
            task.completed = False
            tasks.append(task)
        return tasks

    async def complete_today(self, user_id: str, task_id: str) -> Task:
        """
        Complete today's repetition of the habit bound to task_id

        A second completion on the same calendar day returns the embedded
        task unchanged and awards nothing.

        Returns:
            The habit's embedded task
        """
        def _complete(progress: UserProgress) -> tuple[Task, bool]:
            habit = self._find_by_task(progress, task_id)

            if self._completed_on_today(habit):
                return habit.task.model_copy(deep=True), False
            if habit.completed_today:
                # flag left over from a previous day
                self._clear_daily_flags(habit)

            days_since = self._days_since_last_completion(habit)
            if days_since is not None and days_since > 1:
                self._mark_missed(progress, habit, days_since, surface=False)
            progress.missed_habits = [m for m in progress.missed_habits if m.habit_id != habit.id]

            now = self.clock.now()
            roll_daily_stats(progress.stats, self.clock.today())

            habit.streak += 1
            habit.longest_streak = max(habit.longest_streak, habit.streak)
            habit.completed_days.append(CompletionDay(date=now, completed=True))
            habit.completed_today = True
            habit.task.completed = True
            habit.task.completed_at = now
            habit.task.status = TaskStatus.COMPLETED

            progress.completed_tasks.append(CompletionRecord(
                task_id=habit.task.id,
                type=TaskType.HABIT,
                completed_at=now,
                habit_id=habit.id,
                category_xp=dict(habit.task.category_xp),
            ))
            progress.stats.total_tasks_completed += 1
            progress.stats.today_completed_tasks.append(habit.task.id)
            self.ledger.apply(progress, habit.task.category_xp)
            record_activity(progress, self.clock)

            if (
                habit.completed_count >= HABIT_ESTABLISHMENT_DAYS
                and habit.established_at is None
            ):
                habit.established_at = now
                if not habit.established_bonus_awarded:
                    habit.established_bonus_awarded = True
                    self.ledger.apply(
                        progress,
                        {category_id: HABIT_ESTABLISHED_BONUS_XP for category_id in CATEGORY_IDS}
                    )
                    logger.info(f"Habit {habit.id} of user {user_id} established after {habit.completed_count} days")

            return habit.task.model_copy(deep=True), True

        task, recorded = await self.store.mutate(user_id, _complete)
        if recorded:
            record_completion(TaskType.HABIT.value)
        return task

    async def reset_daily_status(self, user_id: str) -> int:
        """
        Clear the completed-today flags of every habit

        Returns:
            Number of habits that were reset
        """
        def _reset(progress: UserProgress) -> int:
            count = 0
            for habit in progress.habits.values():
                if habit.completed_today or habit.task.completed:
                    self._clear_daily_flags(habit)
                    count += 1
            return count

        count = await self.store.mutate(user_id, _reset)
        logger.debug(f"Reset daily status of {count} habit(s) for user {user_id}")
        return count

    async def check_and_handle_missed_days(self, user_id: str) -> List[MissedHabit]:
        """
        Detect habits whose daily cadence broke

        Returns:
            The missed habits (also stored on the user's progress)
        """
        def _check(progress: UserProgress) -> List[MissedHabit]:
            missed = []
            for habit in progress.habits.values():
                if self._completed_on_today(habit):
                    continue
                days_since = self._days_since_last_completion(habit)
                if days_since is None or days_since <= 1:
                    continue
                entry = self._mark_missed(progress, habit, days_since)
                if entry is not None:
                    missed.append(entry)
            return missed

        missed = await self.store.mutate(user_id, _check)
        if missed:
            logger.info(f"User {user_id} missed {len(missed)} habit(s)")
        return missed

    async def reset_habit_progress(self, user_id: str, habit_id: str, restart: bool = False) -> Habit:
        """
        Resolve a missed habit

        Continue keeps the completed days and only zeroes the streak;
        restart also wipes the completion history and establishment.
        """
        def _reset(progress: UserProgress) -> Habit:
            habit = self._get(progress, habit_id)
            habit.streak = 0
            self._clear_daily_flags(habit)
            if restart:
                habit.completed_days = []
                habit.established_at = None
                habit.last_missed_date = None
            else:
                habit.last_missed_date = self.clock.now()
            progress.missed_habits = [m for m in progress.missed_habits if m.habit_id != habit_id]
            return habit.model_copy(deep=True)

        habit = await self.store.mutate(user_id, _reset)
        logger.info(f"{'Restarted' if restart else 'Continued'} habit {habit_id} for user {user_id}")
        return habit

    async def delete(self, user_id: str, habit_id: str) -> None:
        def _delete(progress: UserProgress) -> None:
            self._get(progress, habit_id)
            del progress.habits[habit_id]
            progress.missed_habits = [m for m in progress.missed_habits if m.habit_id != habit_id]

        await self.store.mutate(user_id, _delete)
        logger.info(f"Deleted habit {habit_id} for user {user_id}")
