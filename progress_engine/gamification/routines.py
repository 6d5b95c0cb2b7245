"""
Routine Engine

A routine is a set of catalog tasks shared by one or more participants.
Each participant keeps a copy of the routine on their own progress record
and completes its tasks there, once per (task, routine, day). Nothing is
written to another participant's record after creation; the shared view
(who has done what today) is read across the participants' records.

A shared task stays on today's list until every current participant has
done it; in a solo routine it drops off once the owner has. The routine
streak advances on days where the participant finished every task
scheduled for that day.
"""

from typing import Dict, List, Optional, Sequence, Union
import logging

from progress_engine.db.catalog import TaskCatalog
from progress_engine.exceptions import NotFoundError, ValidationError
from progress_engine.gamification.streak_system import advance_streak, record_activity, roll_daily_stats
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.models.progress import UserProgress
from progress_engine.models.routine import Routine, RoutineTaskMeta, RoutineTaskView
from progress_engine.models.task import CompletionRecord, TaskType
from progress_engine.resilience.metrics import record_completion
from progress_engine.utils.datetime_helpers import Clock
from progress_engine.utils.ids import IdGenerator

logger = logging.getLogger(__name__)


class RoutineEngine:
    """Create, complete and list shared routines"""

    def __init__(
        self,
        store,
        ledger: XPLedger,
        tasks: TaskCatalog,
        clock: Optional[Clock] = None,
        ids: Optional[IdGenerator] = None
    ):
        self.store = store
        self.ledger = ledger
        self.tasks = tasks
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()

    def _active(self, progress: UserProgress, routine_id: str, operation: str) -> Routine:
        routine = progress.routines.get(routine_id)
        if routine is None or not routine.active:
            raise NotFoundError(
                f"No active routine {routine_id}",
                record_type="Routine",
                record_id=routine_id,
                user_id=progress.user_id,
                operation=operation
            )
        return routine

    def _completed_today(self, progress: UserProgress, routine_id: str, task_id: str) -> bool:
        today = self.clock.today()
        return any(
            record.type == TaskType.ROUTINE
            and record.routine_id == routine_id
            and record.task_id == task_id
            and self.clock.local_date(record.completed_at) == today
            for record in progress.completed_tasks
        )

    def current_streak(self, routine: Routine) -> int:
        """Stored streak, or 0 once a whole day has passed without finishing the routine"""
        if routine.last_completed is None:
            return 0
        if (self.clock.today() - routine.last_completed).days > 1:
            return 0
        return routine.streak

    async def create_routine(
        self,
        user_id: str,
        title: str,
        tasks: Sequence[Union[str, RoutineTaskMeta]],
        participants: Sequence[str] = (),
        description: str = ""
    ) -> Routine:
        """
        Create a routine and hand a copy to every participant

        The creator is always a participant.

        Raises:
            ValidationError: blank title or no tasks
            NotFoundError: unknown catalog task or participant
        """
        if not title or not title.strip():
            raise ValidationError(
                "Routine title is required",
                field="title",
                value=title,
                user_id=user_id,
                operation="create_routine"
            )
        if not tasks:
            raise ValidationError(
                "A routine needs at least one task",
                field="tasks",
                user_id=user_id,
                operation="create_routine"
            )

        metas = [
            meta.model_copy(update={"order": index}) if isinstance(meta, RoutineTaskMeta)
            else RoutineTaskMeta(task_id=meta, order=index)
            for index, meta in enumerate(tasks)
        ]
        found = await self.tasks.get_tasks(meta.task_id for meta in metas)
        for meta in metas:
            if meta.task_id not in found:
                raise NotFoundError(
                    f"Task {meta.task_id} does not exist",
                    record_type="Task",
                    record_id=meta.task_id,
                    user_id=user_id,
                    operation="create_routine"
                )

        members = list(dict.fromkeys([user_id, *participants]))
        for member in members:
            await self.store.get(member)

        routine = Routine(
            id=self.ids.new_id("routine"),
            title=title.strip(),
            description=description.strip(),
            created_by=user_id,
            participants=members,
            tasks=metas,
            created_at=self.clock.now(),
        )

        def _add(progress: UserProgress) -> None:
            progress.routines.setdefault(routine.id, routine.model_copy(deep=True))

        for member in members:
            await self.store.mutate(member, _add)

        logger.info(f"User {user_id} created routine {routine.id} with {len(members)} participant(s)")
        return routine

    def _live(self, progress: UserProgress) -> List[Routine]:
        routines = []
        for routine in progress.routines.values():
            if not routine.active:
                continue
            routine.streak = self.current_streak(routine)
            routines.append(routine)
        return sorted(routines, key=lambda routine: routine.created_at)

    async def get_user_routines(self, user_id: str) -> List[Routine]:
        return self._live(await self.store.get(user_id))

    async def complete_routine_task(self, user_id: str, routine_id: str, task_id: str) -> Routine:
        """
        Record the user's completion of a routine task for today

        Completing the same task of the same routine twice on one day is a
        no-op. Other participants' records are never touched.

        Raises:
            NotFoundError: routine not held by the user, or task not part of it
        """
        task = await self.tasks.get_task(task_id)
        category_xp = dict(task.category_xp) if task else {}
        now = self.clock.now()
        today = self.clock.today()

        def _complete(progress: UserProgress) -> tuple[Routine, bool]:
            routine = self._active(progress, routine_id, "complete_routine_task")
            if not any(meta.task_id == task_id for meta in routine.tasks):
                raise NotFoundError(
                    f"Task {task_id} is not part of routine {routine_id}",
                    record_type="Task",
                    record_id=task_id,
                    user_id=user_id,
                    operation="complete_routine_task"
                )

            if self._completed_today(progress, routine_id, task_id):
                return routine.model_copy(deep=True), False

            roll_daily_stats(progress.stats, today)
            progress.completed_tasks.append(CompletionRecord(
                task_id=task_id,
                type=TaskType.ROUTINE,
                completed_at=now,
                routine_id=routine_id,
                category_xp=category_xp,
            ))
            progress.stats.total_tasks_completed += 1
            progress.stats.today_completed_tasks.append(task_id)
            self.ledger.apply(progress, category_xp)
            record_activity(progress, self.clock)

            scheduled = routine.scheduled_on(today)
            if (
                scheduled
                and routine.last_completed != today
                and all(self._completed_today(progress, routine_id, meta.task_id) for meta in scheduled)
            ):
                routine.streak = advance_streak(routine.streak, routine.last_completed, today)
                routine.best_streak = max(routine.best_streak, routine.streak)
                routine.last_completed = today
                routine.total_completions += 1
                logger.info(f"User {user_id} finished routine {routine_id} today (streak {routine.streak})")

            return routine.model_copy(deep=True), True

        routine, recorded = await self.store.mutate(user_id, _complete)
        if recorded:
            record_completion(TaskType.ROUTINE.value)
            logger.info(f"User {user_id} completed task {task_id} in routine {routine_id}")
        return routine

    async def _member_records(self, routine: Routine, own: UserProgress) -> Dict[str, UserProgress]:
        """Progress records of the participants that still hold the routine"""
        records = {own.user_id: own}
        for participant in routine.participants:
            if participant in records:
                continue
            try:
                progress = await self.store.get(participant)
            except NotFoundError:
                logger.warning(f"Participant {participant} of routine {routine.id} has no progress record")
                continue
            held = progress.routines.get(routine.id)
            if held is not None and held.active:
                records[participant] = progress
        return records

    async def get_todays_routine_tasks(self, user_id: str) -> List[RoutineTaskView]:
        """
        Routine tasks still open today

        A solo routine's task is open until the user completes it; a shared
        one stays open until every current participant has.
        """
        progress = await self.store.get(user_id)
        today = self.clock.today()
        views = []
        for routine in self._live(progress):
            scheduled = routine.scheduled_on(today)
            if not scheduled:
                continue
            members = await self._member_records(routine, progress)
            found = await self.tasks.get_tasks(meta.task_id for meta in scheduled)

            for meta in scheduled:
                task = found.get(meta.task_id)
                if task is None:
                    logger.warning(f"Routine {routine.id} references missing task {meta.task_id}")
                    continue
                completed_by = [
                    member for member, record in members.items()
                    if self._completed_today(record, routine.id, meta.task_id)
                ]
                is_completed = user_id in completed_by
                all_completed = len(completed_by) == len(members)
                if (is_completed if len(members) == 1 else all_completed):
                    continue
                views.append(RoutineTaskView(
                    **task.model_dump(exclude={"type"}),
                    type=TaskType.ROUTINE,
                    routine_id=routine.id,
                    routine_title=routine.title,
                    participants=list(members),
                    completed_by=completed_by,
                    is_completed=is_completed,
                    all_completed=all_completed,
                    streak=routine.streak,
                ))
        return views

    async def leave_routine(self, user_id: str, routine_id: str) -> None:
        """Drop the user's copy; the user's completion history stays"""
        def _leave(progress: UserProgress) -> None:
            self._active(progress, routine_id, "leave_routine")
            del progress.routines[routine_id]

        await self.store.mutate(user_id, _leave)
        logger.info(f"User {user_id} left routine {routine_id}")
