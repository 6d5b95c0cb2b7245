"""Unit tests for the challenge engine"""
import asyncio
import pytest

from progress_engine.exceptions import ChallengeAlreadyActiveError, DuplicateError, NotFoundError
from progress_engine.gamification.challenges import ChallengeEngine, is_fully_completed, required_completions
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.models.challenge import Frequency
from progress_engine.models.task import CompletionRecord, TaskType


def test_required_completions():
    assert required_completions(Frequency.DAILY, 30) == 30
    assert required_completions(Frequency.WEEKLY, 14) == 2
    assert required_completions(Frequency.WEEKLY, 15) == 3


class TestJoin:

    @pytest.mark.asyncio
    async def test_join_creates_first_attempt(self, challenges, user_id, clock):
        instance = await challenges.join(user_id, "fit-3")
        assert instance.attempts == 1
        assert instance.progress == 0
        assert instance.task_progress == []
        assert instance.active is True
        assert instance.start_date == clock.now()

    @pytest.mark.asyncio
    async def test_join_unknown_challenge(self, challenges, user_id):
        with pytest.raises(NotFoundError):
            await challenges.join(user_id, "nope")

    @pytest.mark.asyncio
    async def test_join_twice_is_conflict(self, challenges, user_id):
        await challenges.join(user_id, "fit-3")
        with pytest.raises(ChallengeAlreadyActiveError) as exc_info:
            await challenges.join(user_id, "fit-3")
        assert isinstance(exc_info.value, DuplicateError)

    @pytest.mark.asyncio
    async def test_rejoin_clears_todays_completions_of_that_challenge(
        self, challenges, store, clock, user_id
    ):
        def _seed(progress):
            progress.completed_tasks.append(CompletionRecord(
                task_id="run", type=TaskType.CHALLENGE, completed_at=clock.now(), challenge_id="fit-3"
            ))
            progress.completed_tasks.append(CompletionRecord(
                task_id="run", type=TaskType.NORMAL, completed_at=clock.now()
            ))

        await store.mutate(user_id, _seed)
        await challenges.join(user_id, "fit-3")

        progress = await store.get(user_id)
        assert [record.type for record in progress.completed_tasks] == [TaskType.NORMAL]


class TestTodaysTasks:

    @pytest.mark.asyncio
    async def test_lists_open_tasks_tagged_with_challenge(self, challenges, user_id):
        await challenges.join(user_id, "fit-3")
        tasks = await challenges.get_todays_tasks(user_id)

        assert [task.id for task in tasks] == ["run", "pushups"]
        assert all(task.challenge_id == "fit-3" for task in tasks)
        assert all(task.challenge_title == "Three Day Fitness" for task in tasks)
        assert all(task.type == TaskType.CHALLENGE for task in tasks)
        assert tasks[0].frequency == "daily"

    @pytest.mark.asyncio
    async def test_completed_tasks_drop_out(self, challenges, user_id):
        await challenges.join(user_id, "fit-3")
        await challenges.complete_task(user_id, "fit-3", "run")
        tasks = await challenges.get_todays_tasks(user_id)
        assert [task.id for task in tasks] == ["pushups"]

    @pytest.mark.asyncio
    async def test_missing_catalog_tasks_are_skipped(self, challenges, user_id):
        await challenges.join(user_id, "ghost")
        assert await challenges.get_todays_tasks(user_id) == []


class TestCompleteTask:

    @pytest.mark.asyncio
    async def test_complete_records_progress_and_xp(self, challenges, store, user_id):
        await challenges.join(user_id, "fit-3")
        instance = await challenges.complete_task(user_id, "fit-3", "run")

        entry = instance.progress_for("run")
        assert len(entry.completed_dates) == 1
        assert entry.streak_count == 1
        assert entry.last_completed is not None

        progress = await store.get(user_id)
        assert progress.categories["physical"].xp == 50
        assert progress.stats.total_tasks_completed == 1
        assert progress.completed_tasks[-1].challenge_id == "fit-3"

    @pytest.mark.asyncio
    async def test_same_day_completion_is_idempotent(self, challenges, store, user_id):
        await challenges.join(user_id, "fit-3")
        await challenges.complete_task(user_id, "fit-3", "run")
        instance = await challenges.complete_task(user_id, "fit-3", "run")

        assert len(instance.progress_for("run").completed_dates) == 1
        progress = await store.get(user_id)
        assert progress.categories["physical"].xp == 50

    @pytest.mark.asyncio
    async def test_task_outside_template(self, challenges, user_id):
        await challenges.join(user_id, "fit-3")
        with pytest.raises(NotFoundError):
            await challenges.complete_task(user_id, "fit-3", "meditate")

    @pytest.mark.asyncio
    async def test_not_joined(self, challenges, user_id):
        with pytest.raises(NotFoundError):
            await challenges.complete_task(user_id, "fit-3", "run")

    @pytest.mark.asyncio
    async def test_completion_needs_every_task(self, challenges, store, clock, user_id):
        await challenges.join(user_id, "fit-3")

        for _ in range(3):
            instance = await challenges.complete_task(user_id, "fit-3", "run")
            clock.advance(days=1)

        assert not is_fully_completed(instance)
        progress = await store.get(user_id)
        assert "fit-3" not in progress.stats.challenges_completed

        clock.advance(days=-3)
        for _ in range(3):
            instance = await challenges.complete_task(user_id, "fit-3", "pushups")
            clock.advance(days=1)

        assert is_fully_completed(instance)
        progress = await store.get(user_id)
        assert progress.stats.challenges_completed == ["fit-3"]

    @pytest.mark.asyncio
    async def test_progress_is_days_elapsed(self, challenges, clock, user_id):
        await challenges.join(user_id, "fit-3")
        clock.advance(days=1)
        instance = await challenges.complete_task(user_id, "fit-3", "run")
        assert instance.progress == 33

        clock.advance(days=5)
        instance = await challenges.complete_task(user_id, "fit-3", "run")
        assert instance.progress == 100

    @pytest.mark.asyncio
    async def test_weekly_task_needs_one_per_week(self, challenges, clock, user_id):
        await challenges.join(user_id, "read-weekly")
        await challenges.complete_task(user_id, "read-weekly", "read")
        clock.advance(days=7)
        instance = await challenges.complete_task(user_id, "read-weekly", "read")
        assert is_fully_completed(instance)

    @pytest.mark.asyncio
    async def test_racing_completions_record_once(
        self, yielding_store, challenge_catalog, task_catalog, clock
    ):
        await yielding_store.create("u")
        engine = ChallengeEngine(
            yielding_store, XPLedger(yielding_store), challenge_catalog, task_catalog, clock
        )
        await engine.join("u", "fit-3")

        await asyncio.gather(*(engine.complete_task("u", "fit-3", "run") for _ in range(5)))

        progress = await yielding_store.get("u")
        records = [r for r in progress.completed_tasks if r.type == TaskType.CHALLENGE]
        assert len(records) == 1
        assert len(progress.find_challenge("fit-3").progress_for("run").completed_dates) == 1
        assert progress.stats.total_tasks_completed == 1
        assert progress.categories["physical"].xp == 50


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_failed_challenge_detection(self, challenges, clock, user_id):
        await challenges.join(user_id, "fit-3")
        await challenges.complete_task(user_id, "fit-3", "run")

        clock.advance(days=1)
        assert await challenges.check_failed_challenges(user_id) == []

        clock.advance(days=1)
        failed = await challenges.check_failed_challenges(user_id)
        assert [instance.id for instance in failed] == ["fit-3"]

    @pytest.mark.asyncio
    async def test_reset_starts_new_attempt(self, challenges, clock, user_id):
        await challenges.join(user_id, "fit-3")
        await challenges.complete_task(user_id, "fit-3", "run")
        clock.advance(days=3)

        instance = await challenges.reset_challenge_progress(user_id, "fit-3")

        assert instance.attempts == 2
        assert instance.task_progress == []
        assert instance.task_completions == {}
        assert instance.progress == 0
        assert instance.start_date == clock.now()
        assert instance.active is True

    @pytest.mark.asyncio
    async def test_quit_removes_instance(self, challenges, store, user_id):
        await challenges.join(user_id, "fit-3")
        await challenges.quit_challenge(user_id, "fit-3")

        progress = await store.get(user_id)
        assert progress.challenges == []
        assert progress.stats.challenges_completed == ["fit-3"]
        assert progress.stats.total_tasks_completed == 0

    @pytest.mark.asyncio
    async def test_complete_challenge_counts_once(self, challenges, store, user_id):
        await challenges.join(user_id, "fit-3")
        await challenges.complete_challenge(user_id, "fit-3")
        await challenges.join(user_id, "fit-3")
        await challenges.complete_challenge(user_id, "fit-3")

        progress = await store.get(user_id)
        assert progress.stats.challenges_completed == ["fit-3"]
        assert progress.stats.total_tasks_completed == 2

    @pytest.mark.asyncio
    async def test_get_user_challenges_refreshes_progress(self, challenges, clock, user_id):
        await challenges.join(user_id, "read-weekly")
        clock.advance(days=7)
        [instance] = await challenges.get_user_challenges(user_id)
        assert instance.progress == 50

        assert await challenges.update_challenge_progress(user_id, "read-weekly") == 50
