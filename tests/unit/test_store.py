"""Unit tests for the optimistic-concurrency progress store"""
import asyncio
import pytest

from progress_engine.db.store import InMemoryProgressStore
from progress_engine.exceptions import ConflictError, NotFoundError, ValidationError
from progress_engine.gamification.xp_system import XPLedger
from progress_engine.services.task_service import TaskCompletionService
from tests.conftest import YieldingStore


class AlwaysStaleStore(InMemoryProgressStore):
    """Store whose conditional write never succeeds"""

    async def _compare_and_swap(self, progress, expected_version):
        return False


@pytest.mark.asyncio
async def test_create_is_idempotent(store):
    first = await store.create("u")
    second = await store.create("u")
    assert first.user_id == second.user_id == "u"
    assert await store.list_user_ids() == ["u"]


@pytest.mark.asyncio
async def test_get_unknown_user_raises(store):
    with pytest.raises(NotFoundError):
        await store.get("ghost")


@pytest.mark.asyncio
async def test_mutate_bumps_version_and_returns_result(store, user_id):
    def _add(progress):
        progress.active_tasks.append("run")
        return len(progress.active_tasks)

    assert await store.mutate(user_id, _add) == 1
    progress = await store.get(user_id)
    assert progress.version == 1
    assert progress.active_tasks == ["run"]


@pytest.mark.asyncio
async def test_snapshots_are_independent(store, user_id):
    snapshot = await store.get(user_id)
    snapshot.active_tasks.append("run")
    fresh = await store.get(user_id)
    assert fresh.active_tasks == []


@pytest.mark.asyncio
async def test_failed_mutation_writes_nothing(store, user_id):
    def _fail(progress):
        progress.active_tasks.append("run")
        raise ValidationError("nope", field="task")

    with pytest.raises(ValidationError):
        await store.mutate(user_id, _fail)

    progress = await store.get(user_id)
    assert progress.version == 0
    assert progress.active_tasks == []


@pytest.mark.asyncio
async def test_exhausted_retries_raise_conflict():
    store = AlwaysStaleStore(max_retries=2, base_delay=0)
    await store.create("u")
    calls = []

    with pytest.raises(ConflictError) as exc_info:
        await store.mutate("u", lambda progress: calls.append(1))

    assert len(calls) == 3
    assert exc_info.value.attempts == 3


@pytest.mark.asyncio
async def test_interleaved_writers_both_commit():
    store = YieldingStore(base_delay=0)
    await store.create("u")

    def _append(task_id):
        def _fn(progress):
            progress.active_tasks.append(task_id)
        return _fn

    await asyncio.gather(store.mutate("u", _append("a")), store.mutate("u", _append("b")))

    progress = await store.get("u")
    assert sorted(progress.active_tasks) == ["a", "b"]
    assert progress.version == 2


@pytest.mark.asyncio
async def test_racing_completions_produce_one_record(task_catalog, clock):
    store = YieldingStore(base_delay=0)
    await store.create("u")
    service = TaskCompletionService(store, XPLedger(store), task_catalog, clock)

    await asyncio.gather(*(service.complete("u", "run") for _ in range(5)))

    progress = await store.get("u")
    assert len(progress.completed_tasks) == 1
    assert progress.stats.total_tasks_completed == 1
    assert progress.categories["physical"].xp == 50
