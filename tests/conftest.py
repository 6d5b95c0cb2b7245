"""Global test fixtures and utilities for progress-engine tests"""
import asyncio
import pytest
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

from progress_engine.db.catalog import InMemoryChallengeCatalog, InMemoryTaskCatalog
from progress_engine.db.store import InMemoryProgressStore
from progress_engine.models.challenge import ChallengeTaskMeta, ChallengeTemplate, Frequency
from progress_engine.models.task import SafetyCheck, Task, TaskEvaluation
from progress_engine.resilience.rate_limiter import RateLimiter
from progress_engine.services.container import EngineContainer
from progress_engine.utils.datetime_helpers import Clock
from progress_engine.utils.ids import IdGenerator


# ============================================================================
# Time & Id Fixtures
# ============================================================================

class FixedClock(Clock):
    """Clock pinned to a settable instant"""

    def __init__(self, current: datetime, tz_name: str = "UTC"):
        super().__init__(tz_name)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class SequentialIdGenerator(IdGenerator):
    """Predictable ids: habit_1, habit_2, goal_1, ..."""

    def __init__(self):
        self._counters = defaultdict(int)

    def new_id(self, prefix: Optional[str] = None) -> str:
        key = prefix or "id"
        self._counters[key] += 1
        return f"{key}_{self._counters[key]}"


@pytest.fixture
def start_time():
    """Monday morning, UTC"""
    return datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(start_time):
    return FixedClock(start_time)


@pytest.fixture
def ids():
    return SequentialIdGenerator()


# ============================================================================
# Catalog Fixtures
# ============================================================================

@pytest.fixture
def catalog_tasks():
    """Global task catalog"""
    return [
        Task(id="run", title="Morning Run", categories=["physical"], category_xp={"physical": 50}),
        Task(id="read", title="Read 20 Pages", categories=["intellectual", "mental"],
             category_xp={"intellectual": 30, "mental": 20}),
        Task(id="meditate", title="Meditate", categories=["spiritual"], category_xp={"spiritual": 20}),
        Task(id="pushups", title="Push-ups", categories=["physical"], category_xp={"physical": 15}),
        Task(id="budget", title="Review Budget", categories=["financial"], category_xp={"financial": 40}),
    ]


@pytest.fixture
def challenge_templates():
    """Challenge templates"""
    return [
        ChallengeTemplate(
            id="fit-3",
            title="Three Day Fitness",
            tasks=[
                ChallengeTaskMeta(task_id="run", frequency=Frequency.DAILY),
                ChallengeTaskMeta(task_id="pushups", frequency=Frequency.DAILY),
            ],
            duration=3,
            category=["physical"],
        ),
        ChallengeTemplate(
            id="read-weekly",
            title="Fortnight of Reading",
            tasks=[ChallengeTaskMeta(task_id="read", frequency=Frequency.WEEKLY)],
            duration=14,
            category=["intellectual"],
        ),
        ChallengeTemplate(
            id="ghost",
            title="Ghost Challenge",
            tasks=[ChallengeTaskMeta(task_id="missing-task")],
            duration=7,
        ),
    ]


@pytest.fixture
def task_catalog(catalog_tasks):
    return InMemoryTaskCatalog(catalog_tasks)


@pytest.fixture
def challenge_catalog(challenge_templates):
    return InMemoryChallengeCatalog(challenge_templates)


# ============================================================================
# Store & Engine Fixtures
# ============================================================================

class YieldingStore(InMemoryProgressStore):
    """Store that yields to the event loop between read and write, so writers interleave"""

    async def _load(self, user_id):
        snapshot = await super()._load(user_id)
        await asyncio.sleep(0)
        return snapshot


@pytest.fixture
def store():
    """In-memory progress store without retry delays"""
    return InMemoryProgressStore(base_delay=0)


@pytest.fixture
def yielding_store():
    return YieldingStore(base_delay=0)


@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "user-1"


@pytest.fixture
async def user_id(store, test_user_id):
    """A user with a fresh progress record"""
    await store.create(test_user_id)
    return test_user_id


def make_evaluation(
    is_valid: bool = True,
    passed: bool = True,
    title: str = "Evening Stretch",
    category_xp: Optional[dict] = None,
    concerns: Optional[list] = None,
    suggestions: Optional[list] = None,
) -> TaskEvaluation:
    return TaskEvaluation(
        is_valid=is_valid,
        categories=list((category_xp or {"physical": 30}).keys()),
        category_xp=category_xp or {"physical": 30},
        feedback="Love this goal!",
        title=title,
        description="Stretch for 15 minutes before bed",
        tags=["stretching"],
        safety_check=SafetyCheck(passed=passed, concerns=concerns or [], suggestions=suggestions or []),
    )


@pytest.fixture
def mock_evaluator():
    """Task evaluator returning a valid, safe evaluation"""
    evaluator = MagicMock()
    evaluator.evaluate = AsyncMock(return_value=make_evaluation())
    return evaluator


@pytest.fixture
def container(store, task_catalog, challenge_catalog, clock, ids, mock_evaluator):
    """Engines wired to the in-memory store, fixed clock and sequential ids"""
    return EngineContainer(
        store=store,
        tasks=task_catalog,
        challenges=challenge_catalog,
        clock=clock,
        ids=ids,
        rate_limiter=RateLimiter(min_interval=0),
        evaluator=mock_evaluator,
    )


@pytest.fixture
def ledger(container):
    return container.ledger


@pytest.fixture
def task_service(container):
    return container.task_service


@pytest.fixture
def user_task_service(container):
    return container.user_task_service


@pytest.fixture
def habits(container):
    return container.habits


@pytest.fixture
def challenges(container):
    return container.challenge_engine


@pytest.fixture
def goals(container):
    return container.goals


@pytest.fixture
def routines(container):
    return container.routines


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def mock_db_cursor():
    """Mock database cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    cursor.rowcount = 1
    return cursor


@pytest.fixture
def mock_database(mock_db_cursor):
    """Database whose connection() yields a connection handing out mock_db_cursor"""
    cursor_cm = MagicMock()
    cursor_cm.__aenter__ = AsyncMock(return_value=mock_db_cursor)
    cursor_cm.__aexit__ = AsyncMock(return_value=False)

    conn = MagicMock()
    conn.cursor = MagicMock(return_value=cursor_cm)
    conn.commit = AsyncMock()

    conn_cm = MagicMock()
    conn_cm.__aenter__ = AsyncMock(return_value=conn)
    conn_cm.__aexit__ = AsyncMock(return_value=False)

    database = MagicMock()
    database.connection = MagicMock(return_value=conn_cm)
    database.conn = conn
    return database
