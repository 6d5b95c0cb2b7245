"""Read-only catalogs of global tasks and challenge templates"""
import logging
from typing import Iterable, Optional

from progress_engine.models.challenge import ChallengeTemplate
from progress_engine.models.task import Task

logger = logging.getLogger(__name__)


class TaskCatalog:
    """Global task catalog interface"""

    async def get_task(self, task_id: str) -> Optional[Task]:
        raise NotImplementedError

    async def list_tasks(self) -> list[Task]:
        raise NotImplementedError

    async def get_tasks(self, task_ids: Iterable[str]) -> dict[str, Task]:
        """Resolve several ids at once; unknown ids are left out"""
        found = {}
        for task_id in task_ids:
            task = await self.get_task(task_id)
            if task is not None:
                found[task_id] = task
        return found


class ChallengeCatalog:
    """Challenge template catalog interface"""

    async def get_challenge(self, challenge_id: str) -> Optional[ChallengeTemplate]:
        raise NotImplementedError

    async def list_challenges(self) -> list[ChallengeTemplate]:
        raise NotImplementedError


class InMemoryTaskCatalog(TaskCatalog):

    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks = {task.id: task for task in tasks}

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def list_tasks(self) -> list[Task]:
        return [task.model_copy(deep=True) for task in self._tasks.values()]


class InMemoryChallengeCatalog(ChallengeCatalog):

    def __init__(self, challenges: Iterable[ChallengeTemplate] = ()):
        self._challenges = {challenge.id: challenge for challenge in challenges}

    async def get_challenge(self, challenge_id: str) -> Optional[ChallengeTemplate]:
        challenge = self._challenges.get(challenge_id)
        return challenge.model_copy(deep=True) if challenge else None

    async def list_challenges(self) -> list[ChallengeTemplate]:
        return [challenge.model_copy(deep=True) for challenge in self._challenges.values()]
