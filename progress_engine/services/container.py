"""
Engine Container - Dependency Injection Container

Wires the store, catalogs, clock, id source and rate limiter into the
engines. Engines are lazy-loaded on first access; the rate limiter is
built once and shared by reference.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from progress_engine.db.catalog import ChallengeCatalog, TaskCatalog
from progress_engine.resilience.rate_limiter import RateLimiter
from progress_engine.utils.datetime_helpers import Clock
from progress_engine.utils.ids import IdGenerator

logger = logging.getLogger(__name__)


@dataclass
class EngineContainer:
    """
    Simple dependency injection container for the engines.

    Infrastructure dependencies are injected; engines are lazy-loaded via
    properties. `evaluator` may be left out, in which case an OpenAI-backed
    one is built on first use.
    """

    # Infrastructure dependencies (injected)
    store: object  # ProgressStore
    tasks: TaskCatalog
    challenges: ChallengeCatalog
    clock: Clock = field(default_factory=Clock)
    ids: IdGenerator = field(default_factory=IdGenerator)
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    evaluator: Optional[object] = None  # TaskEvaluator

    # Engines (lazy-loaded via properties)
    _ledger: Optional[object] = field(default=None, init=False, repr=False)
    _task_service: Optional[object] = field(default=None, init=False, repr=False)
    _user_task_service: Optional[object] = field(default=None, init=False, repr=False)
    _habits: Optional[object] = field(default=None, init=False, repr=False)
    _challenge_engine: Optional[object] = field(default=None, init=False, repr=False)
    _goals: Optional[object] = field(default=None, init=False, repr=False)
    _routines: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def ledger(self):
        """Get XPLedger instance (lazy-loaded)"""
        if self._ledger is None:
            from progress_engine.gamification.xp_system import XPLedger
            self._ledger = XPLedger(self.store)
            logger.debug("XPLedger instantiated")
        return self._ledger

    @property
    def task_service(self):
        """Get TaskCompletionService instance (lazy-loaded)"""
        if self._task_service is None:
            from progress_engine.services.task_service import TaskCompletionService
            self._task_service = TaskCompletionService(self.store, self.ledger, self.tasks, self.clock)
            logger.debug("TaskCompletionService instantiated")
        return self._task_service

    @property
    def user_task_service(self):
        """Get UserGeneratedTaskService instance (lazy-loaded)"""
        if self._user_task_service is None:
            from progress_engine.services.user_task_service import UserGeneratedTaskService
            if self.evaluator is None:
                from progress_engine.agent.task_evaluator import OpenAITaskEvaluator
                self.evaluator = OpenAITaskEvaluator(self.rate_limiter)
            self._user_task_service = UserGeneratedTaskService(
                self.store, self.evaluator, self.tasks, self.clock, self.ids
            )
            logger.debug("UserGeneratedTaskService instantiated")
        return self._user_task_service

    @property
    def habits(self):
        """Get HabitEngine instance (lazy-loaded)"""
        if self._habits is None:
            from progress_engine.gamification.habits import HabitEngine
            self._habits = HabitEngine(self.store, self.ledger, self.clock, self.ids)
            logger.debug("HabitEngine instantiated")
        return self._habits

    @property
    def challenge_engine(self):
        """Get ChallengeEngine instance (lazy-loaded)"""
        if self._challenge_engine is None:
            from progress_engine.gamification.challenges import ChallengeEngine
            self._challenge_engine = ChallengeEngine(
                self.store, self.ledger, self.challenges, self.tasks, self.clock
            )
            logger.debug("ChallengeEngine instantiated")
        return self._challenge_engine

    @property
    def goals(self):
        """Get GoalEngine instance (lazy-loaded)"""
        if self._goals is None:
            from progress_engine.gamification.goals import GoalEngine
            self._goals = GoalEngine(self.store, self.clock, self.ids)
            logger.debug("GoalEngine instantiated")
        return self._goals

    @property
    def routines(self):
        """Get RoutineEngine instance (lazy-loaded)"""
        if self._routines is None:
            from progress_engine.gamification.routines import RoutineEngine
            self._routines = RoutineEngine(self.store, self.ledger, self.tasks, self.clock, self.ids)
            logger.debug("RoutineEngine instantiated")
        return self._routines


# Global container instance (initialized in main.py)
_container: Optional[EngineContainer] = None


def get_container() -> EngineContainer:
    """
    Get the global engine container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Engine container not initialized. "
            "Call init_container() in main.py before using engines."
        )
    return _container


def init_container(
    store: object,
    tasks: TaskCatalog,
    challenges: ChallengeCatalog,
    **kwargs
) -> EngineContainer:
    """
    Initialize the global engine container.

    Should be called once in main.py after infrastructure setup.
    """
    global _container

    _container = EngineContainer(store=store, tasks=tasks, challenges=challenges, **kwargs)
    logger.info("Engine container initialized")
    return _container
