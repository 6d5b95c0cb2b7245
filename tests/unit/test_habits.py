"""Unit tests for the 66-day habit engine"""
import asyncio
import pytest
from datetime import datetime, timedelta, timezone

from progress_engine.exceptions import DuplicateError, DuplicateHabitError, NotFoundError, ValidationError
from progress_engine.gamification.habits import HabitEngine, completion_percentage, remaining_days
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.models.category import CATEGORY_IDS
from progress_engine.models.habit import CompletionDay
from progress_engine.models.task import TaskType


@pytest.fixture
def run_task(catalog_tasks):
    return catalog_tasks[0]


@pytest.fixture
async def habit(habits, user_id, run_task):
    return await habits.create(user_id, "Run every morning", "I want more energy", run_task)


class TestCreateHabit:

    @pytest.mark.asyncio
    async def test_create(self, habit, run_task):
        assert habit.id == "habit_1"
        assert habit.streak == 0
        assert habit.longest_streak == 0
        assert habit.completed_days == []
        assert habit.task.id == run_task.id
        assert habit.task.type == TaskType.HABIT
        assert habit.task.completed is False
        assert "habit" in habit.task.tags

    @pytest.mark.asyncio
    async def test_reason_is_required(self, habits, user_id, run_task):
        with pytest.raises(ValidationError) as exc_info:
            await habits.create(user_id, "Run", "   ", run_task)
        assert exc_info.value.field == "reason"

    @pytest.mark.asyncio
    async def test_task_is_required(self, habits, user_id):
        with pytest.raises(ValidationError) as exc_info:
            await habits.create(user_id, "Run", "Energy", None)
        assert exc_info.value.field == "task"

    @pytest.mark.asyncio
    async def test_same_title_and_task_is_duplicate(self, habits, habit, user_id, run_task):
        with pytest.raises(DuplicateHabitError) as exc_info:
            await habits.create(user_id, "RUN EVERY MORNING", "Again", run_task)
        assert isinstance(exc_info.value, DuplicateError)
        assert exc_info.value.existing.id == habit.id

    @pytest.mark.asyncio
    async def test_same_title_other_task_is_allowed(self, habits, habit, user_id, catalog_tasks):
        other = await habits.create(user_id, "Run every morning", "Variety", catalog_tasks[3])
        assert other.id != habit.id


class TestCompleteToday:

    @pytest.mark.asyncio
    async def test_complete_builds_streak_and_awards(self, habits, habit, store, user_id):
        task = await habits.complete_today(user_id, "run")
        assert task.completed is True

        progress = await store.get(user_id)
        stored = progress.habits[habit.id]
        assert stored.streak == 1
        assert stored.longest_streak == 1
        assert stored.completed_today is True
        assert stored.completed_count == 1
        assert progress.categories["physical"].xp == 50
        assert progress.stats.total_tasks_completed == 1
        assert progress.completed_tasks[-1].habit_id == habit.id
        assert progress.completed_tasks[-1].type == TaskType.HABIT

    @pytest.mark.asyncio
    async def test_second_completion_same_day_is_noop(self, habits, habit, store, user_id):
        await habits.complete_today(user_id, "run")
        await habits.complete_today(user_id, "run")

        progress = await store.get(user_id)
        assert progress.habits[habit.id].streak == 1
        assert progress.habits[habit.id].completed_count == 1
        assert progress.categories["physical"].xp == 50

    @pytest.mark.asyncio
    async def test_consecutive_days(self, habits, habit, store, clock, user_id):
        for _ in range(3):
            await habits.complete_today(user_id, "run")
            clock.advance(days=1)
            await habits.reset_daily_status(user_id)

        progress = await store.get(user_id)
        assert progress.habits[habit.id].streak == 3
        assert progress.habits[habit.id].longest_streak == 3

    @pytest.mark.asyncio
    async def test_stale_completed_flag_does_not_block(self, habits, habit, store, clock, user_id):
        await habits.complete_today(user_id, "run")
        clock.advance(days=1)
        # no daily reset ran
        await habits.complete_today(user_id, "run")

        progress = await store.get(user_id)
        assert progress.habits[habit.id].streak == 2

    @pytest.mark.asyncio
    async def test_unknown_task_raises(self, habits, habit, user_id):
        with pytest.raises(NotFoundError):
            await habits.complete_today(user_id, "meditate")

    @pytest.mark.asyncio
    async def test_establishment_bonus_paid_once(self, habits, habit, store, clock, user_id):
        def _seed(progress):
            start = clock.now() - timedelta(days=65)
            progress.habits[habit.id].completed_days = [
                CompletionDay(date=start + timedelta(days=offset)) for offset in range(65)
            ]
            progress.habits[habit.id].streak = 65

        await store.mutate(user_id, _seed)
        await habits.complete_today(user_id, "run")

        progress = await store.get(user_id)
        stored = progress.habits[habit.id]
        assert stored.completed_count == 66
        assert stored.established_at == clock.now()
        assert progress.categories["physical"].xp == 50 + 100
        for category_id in CATEGORY_IDS:
            if category_id != "physical":
                assert progress.categories[category_id].xp == 100

        # lose establishment, then re-reach it: no second bonus
        clock.advance(days=3)
        await habits.check_and_handle_missed_days(user_id)
        await habits.complete_today(user_id, "run")

        progress = await store.get(user_id)
        assert progress.habits[habit.id].established_at is not None
        assert progress.categories["career"].xp == 100

    @pytest.mark.asyncio
    async def test_racing_completions_record_once(self, yielding_store, clock, ids, run_task):
        await yielding_store.create("u")
        engine = HabitEngine(yielding_store, XPLedger(yielding_store), clock, ids)
        habit = await engine.create("u", "Run", "Energy", run_task)

        await asyncio.gather(*(engine.complete_today("u", "run") for _ in range(5)))

        progress = await yielding_store.get("u")
        records = [r for r in progress.completed_tasks if r.type == TaskType.HABIT]
        assert len(records) == 1
        assert records[0].habit_id == habit.id
        assert progress.habits[habit.id].streak == 1
        assert progress.categories["physical"].xp == 50


class TestMissedDays:

    @pytest.mark.asyncio
    async def test_gap_breaks_streak_and_keeps_history(self, habits, habit, store, clock, user_id):
        await habits.complete_today(user_id, "run")
        clock.advance(days=1)
        await habits.complete_today(user_id, "run")
        clock.advance(days=2)

        missed = await habits.check_and_handle_missed_days(user_id)

        assert len(missed) == 1
        assert missed[0].habit_id == habit.id
        assert missed[0].days_missed == 1
        assert missed[0].last_streak == 2

        progress = await store.get(user_id)
        stored = progress.habits[habit.id]
        assert stored.streak == 0
        assert stored.completed_today is False
        assert stored.established_at is None
        assert stored.last_missed_date == clock.now()
        assert stored.completed_count == 2
        assert [m.habit_id for m in progress.missed_habits] == [habit.id]

    @pytest.mark.asyncio
    async def test_yesterday_is_not_missed(self, habits, habit, clock, user_id):
        await habits.complete_today(user_id, "run")
        clock.advance(days=1)
        assert await habits.check_and_handle_missed_days(user_id) == []

    @pytest.mark.asyncio
    async def test_calendar_boundary_not_24_hours(self, habits, habit, store, clock, user_id):
        clock.set(datetime(2025, 3, 10, 23, 59, tzinfo=timezone.utc))
        await habits.complete_today(user_id, "run")
        # barely a day later, but two midnights crossed
        clock.set(datetime(2025, 3, 12, 0, 0, 30, tzinfo=timezone.utc))
        missed = await habits.check_and_handle_missed_days(user_id)
        assert len(missed) == 1

    @pytest.mark.asyncio
    async def test_never_completed_habit_is_not_missed(self, habits, habit, clock, user_id):
        clock.advance(days=5)
        assert await habits.check_and_handle_missed_days(user_id) == []

    @pytest.mark.asyncio
    async def test_check_is_idempotent(self, habits, habit, store, clock, user_id):
        await habits.complete_today(user_id, "run")
        await habits.complete_today(user_id, "run")
        clock.advance(days=3)

        first = await habits.check_and_handle_missed_days(user_id)
        second = await habits.check_and_handle_missed_days(user_id)

        assert first[0].last_streak == 1
        assert second[0].last_streak == 1
        progress = await store.get(user_id)
        assert len(progress.missed_habits) == 1


class TestResetAndQueries:

    @pytest.mark.asyncio
    async def test_continue_keeps_history(self, habits, habit, store, clock, user_id):
        await habits.complete_today(user_id, "run")
        clock.advance(days=3)
        await habits.check_and_handle_missed_days(user_id)

        result = await habits.reset_habit_progress(user_id, habit.id, restart=False)

        assert result.streak == 0
        assert result.completed_count == 1
        progress = await store.get(user_id)
        assert progress.missed_habits == []
        # a continued habit is not reported again
        assert await habits.check_and_handle_missed_days(user_id) == []

    @pytest.mark.asyncio
    async def test_restart_clears_history(self, habits, habit, clock, user_id):
        await habits.complete_today(user_id, "run")
        clock.advance(days=3)

        result = await habits.reset_habit_progress(user_id, habit.id, restart=True)

        assert result.completed_days == []
        assert result.established_at is None
        assert remaining_days(result) == 66
        assert completion_percentage(result) == 0

    @pytest.mark.asyncio
    async def test_reset_daily_status(self, habits, habit, store, user_id):
        await habits.complete_today(user_id, "run")
        assert await habits.reset_daily_status(user_id) == 1
        assert await habits.reset_daily_status(user_id) == 0

        progress = await store.get(user_id)
        assert progress.habits[habit.id].completed_today is False
        assert progress.habits[habit.id].task.completed is False

    @pytest.mark.asyncio
    async def test_todays_habit_tasks(self, habits, habit, user_id):
        assert [task.id for task in await habits.get_todays_habit_tasks(user_id)] == ["run"]
        await habits.complete_today(user_id, "run")
        assert await habits.get_todays_habit_tasks(user_id) == []

    @pytest.mark.asyncio
    async def test_delete(self, habits, habit, user_id):
        await habits.delete(user_id, habit.id)
        assert await habits.get_habits(user_id) == []
        with pytest.raises(NotFoundError):
            await habits.delete(user_id, habit.id)

    @pytest.mark.asyncio
    async def test_percentage_helpers(self, habit):
        habit.completed_days = [CompletionDay(date=habit.created_at)] * 33
        assert completion_percentage(habit) == 50.0
        assert remaining_days(habit) == 33
