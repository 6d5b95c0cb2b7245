"""
Goal Engine

Goals belong to a calendar unit (day, month or year) in the engine
timezone. Once that unit rolls over, an unfinished goal is archived the
next time its timeframe is listed; archival is terminal.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Union
import logging

from progress_engine.exceptions import InvalidStateError, NotFoundError, ValidationError
from progress_engine.gamification.streak_system import calculate_streak, longest_streak
from progress_engine.models.goal import (
    Goal,
    GoalStats,
    GoalStatus,
    GoalStep,
    GoalTemplate,
    GoalTimeframe,
    Reflection,
    ReflectionOutcome,
)
from progress_engine.models.progress import UserProgress
from progress_engine.utils.datetime_helpers import Clock, same_day, same_month, same_year
from progress_engine.utils.ids import IdGenerator

logger = logging.getLogger(__name__)


def derive_status(progress: int) -> GoalStatus:
    if progress >= 100:
        return GoalStatus.COMPLETED
    if progress > 0:
        return GoalStatus.IN_PROGRESS
    return GoalStatus.NOT_STARTED


def is_expired(goal: Goal, now: datetime, clock: Optional[Clock] = None) -> bool:
    """
    Whether the goal's calendar unit has ended

    - daily: created on a different calendar day
    - monthly: created in a different (year, month)
    - yearly: created in a different year
    """
    tz = (clock or Clock()).tz
    if goal.timeframe == GoalTimeframe.DAILY:
        return not same_day(goal.created_at, now, tz)
    if goal.timeframe == GoalTimeframe.MONTHLY:
        return not same_month(goal.created_at, now, tz)
    if goal.timeframe == GoalTimeframe.YEARLY:
        return not same_year(goal.created_at, now, tz)
    return False


class GoalEngine:
    """Create, progress, expire and reflect on timeframe goals"""

    def __init__(self, store, clock: Optional[Clock] = None, ids: Optional[IdGenerator] = None):
        self.store = store
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()

    def _get(self, progress: UserProgress, goal_id: str, operation: str) -> Goal:
        goal = progress.goals.get(goal_id)
        if goal is None:
            raise NotFoundError(
                f"Goal {goal_id} not found",
                record_type="Goal",
                record_id=goal_id,
                user_id=progress.user_id,
                operation=operation
            )
        return goal

    def _archive(self, goal: Goal, reason: str) -> bool:
        if goal.status == GoalStatus.ARCHIVED:
            return False
        now = self.clock.now()
        goal.status = GoalStatus.ARCHIVED
        goal.archived_at = now
        goal.archive_reason = reason
        goal.updated_at = now
        return True

    def _refresh_stats(self, progress: UserProgress) -> GoalStats:
        goals = [g for g in progress.goals.values() if g.status != GoalStatus.ARCHIVED]
        completed = [g for g in goals if g.status == GoalStatus.COMPLETED]
        completion_days = [
            self.clock.local_date(g.completed_at)
            for g in progress.goals.values()
            if g.timeframe == GoalTimeframe.DAILY and g.completed_at is not None
        ]
        progress.goal_stats = GoalStats(
            total_completed=len(completed),
            completion_rate=(len(completed) / len(goals) * 100) if goals else 0.0,
            current_streak=calculate_streak(completion_days, self.clock.today()),
            longest_streak=max(longest_streak(completion_days), progress.goal_stats.longest_streak),
            last_updated=self.clock.now(),
        )
        return progress.goal_stats

    async def create(
        self,
        user_id: str,
        description: str,
        timeframe: GoalTimeframe = GoalTimeframe.DAILY,
        measurable: Optional[str] = None,
        steps: Optional[Sequence[Union[str, GoalStep]]] = None,
        category: Optional[str] = None,
        parent_goal_id: Optional[str] = None
    ) -> Goal:
        """
        Create a goal

        Raises:
            ValidationError: blank description
        """
        if not description or not description.strip():
            raise ValidationError(
                "Goal description is required",
                field="description",
                value=description,
                user_id=user_id,
                operation="create_goal"
            )

        now = self.clock.now()
        goal_steps = None
        if steps:
            goal_steps = [
                step if isinstance(step, GoalStep) else GoalStep(id=self.ids.new_id("step"), description=step)
                for step in steps
            ]
        goal = Goal(
            id=self.ids.new_id("goal"),
            user_id=user_id,
            description=description.strip(),
            timeframe=timeframe,
            status=GoalStatus.NOT_STARTED,
            progress=0,
            measurable=measurable or None,
            steps=goal_steps,
            category=category or None,
            parent_goal_id=parent_goal_id or None,
            created_at=now,
            updated_at=now,
        )

        def _create(progress: UserProgress) -> Goal:
            progress.goals[goal.id] = goal
            return goal

        await self.store.mutate(user_id, _create)
        logger.info(f"Created {timeframe.value} goal {goal.id} for user {user_id}")
        return goal

    async def create_from_template(self, user_id: str, template: GoalTemplate) -> Goal:
        return await self.create(
            user_id,
            description=template.description or template.title,
            timeframe=template.timeframe,
            steps=template.default_steps or None,
            category=template.category,
        )

    async def update_progress(self, user_id: str, goal_id: str, progress_value: int) -> Goal:
        """
        Set goal progress (clamped to 0..100) and derive its status

        Raises:
            NotFoundError: unknown goal
            InvalidStateError: goal is archived
        """
        value = max(0, min(int(progress_value), 100))

        def _update(progress: UserProgress) -> Goal:
            goal = self._get(progress, goal_id, "update_goal_progress")
            if goal.status == GoalStatus.ARCHIVED:
                raise InvalidStateError(
                    "Archived goals cannot be updated",
                    current_state=goal.status.value,
                    user_id=user_id,
                    operation="update_goal_progress"
                )
            now = self.clock.now()
            goal.progress = value
            goal.status = derive_status(value)
            goal.updated_at = now
            if goal.status == GoalStatus.COMPLETED:
                goal.completed_at = goal.completed_at or now
            else:
                goal.completed_at = None
            self._refresh_stats(progress)
            return goal.model_copy(deep=True)

        goal = await self.store.mutate(user_id, _update)
        logger.info(f"Goal {goal_id} of user {user_id} at {value}% ({goal.status.value})")
        return goal

    def is_expired(self, goal: Goal, now: Optional[datetime] = None) -> bool:
        return is_expired(goal, now or self.clock.now(), self.clock)

    async def get_goals_by_timeframe(self, user_id: str, timeframe: GoalTimeframe) -> List[Goal]:
        """
        Live goals of a timeframe, newest first

        Unfinished goals whose period ended are archived on the way.
        """
        snapshot = await self.store.get(user_id)
        now = self.clock.now()

        def _expired(progress: UserProgress) -> List[Goal]:
            return [
                goal for goal in progress.goals.values()
                if goal.timeframe == timeframe
                and goal.status not in (GoalStatus.ARCHIVED, GoalStatus.COMPLETED)
                and is_expired(goal, now, self.clock)
            ]

        if _expired(snapshot):
            # goals may have been completed since the read above
            def _expire(progress: UserProgress) -> tuple[UserProgress, int]:
                expired = _expired(progress)
                for goal in expired:
                    self._archive(goal, f"{timeframe.value} period ended")
                if expired:
                    self._refresh_stats(progress)
                return progress, len(expired)

            snapshot, archived = await self.store.mutate(user_id, _expire)
            if archived:
                logger.info(f"Archived {archived} expired {timeframe.value} goal(s) for user {user_id}")

        goals = [
            goal for goal in snapshot.goals.values()
            if goal.timeframe == timeframe
            and goal.status != GoalStatus.ARCHIVED
            and not is_expired(goal, now, self.clock)
        ]
        return sorted(goals, key=lambda goal: goal.created_at, reverse=True)

    async def get_all_active_goals(self, user_id: str) -> List[Goal]:
        progress = await self.store.get(user_id)
        goals = [goal for goal in progress.goals.values() if goal.status != GoalStatus.ARCHIVED]
        return sorted(goals, key=lambda goal: goal.created_at, reverse=True)

    async def archive(self, user_id: str, goal_id: str, reason: Optional[str] = None) -> Goal:
        """Archive a goal; archiving an archived goal changes nothing"""
        def _archive(progress: UserProgress) -> Goal:
            goal = self._get(progress, goal_id, "archive_goal")
            if self._archive(goal, reason or "Goal archived"):
                self._refresh_stats(progress)
            return goal.model_copy(deep=True)

        return await self.store.mutate(user_id, _archive)

    async def add_reflection(
        self,
        user_id: str,
        goal_id: str,
        content: str,
        outcome: ReflectionOutcome
    ) -> Goal:
        """
        Attach a reflection to a goal

        A success reflection is only accepted on a completed goal; a failure
        reflection archives the goal.
        """
        def _reflect(progress: UserProgress) -> Goal:
            goal = self._get(progress, goal_id, "add_reflection")
            if outcome == ReflectionOutcome.SUCCESS and goal.status != GoalStatus.COMPLETED:
                raise InvalidStateError(
                    "Only completed goals can be reflected on as a success",
                    current_state=goal.status.value,
                    user_id=user_id,
                    operation="add_reflection"
                )
            now = self.clock.now()
            goal.reflection = Reflection(content=content, outcome=outcome, last_updated=now)
            goal.updated_at = now
            if outcome == ReflectionOutcome.FAILURE:
                self._archive(goal, "Reflected as not achieved")
                self._refresh_stats(progress)
            return goal.model_copy(deep=True)

        goal = await self.store.mutate(user_id, _reflect)
        logger.info(f"Added {outcome.value} reflection to goal {goal_id} of user {user_id}")
        return goal

    async def delete(self, user_id: str, goal_id: str) -> None:
        def _delete(progress: UserProgress) -> None:
            self._get(progress, goal_id, "delete_goal")
            del progress.goals[goal_id]
            self._refresh_stats(progress)

        await self.store.mutate(user_id, _delete)
        logger.info(f"Deleted goal {goal_id} for user {user_id}")

    async def get_goal_stats(self, user_id: str) -> GoalStats:
        progress = await self.store.get(user_id)
        return progress.goal_stats
