"""
Per-user progress store with optimistic concurrency

Every state change goes through ProgressStore.mutate(): read a private
snapshot together with its version, apply a pure function to it, then write
it back only if nobody else wrote in between. A lost race re-runs the whole
read-modify-write, so mutation functions must re-check their idempotency
keys against the fresh snapshot on every attempt.
"""

import asyncio
import logging
from typing import Callable, Optional, TypeVar

from progress_engine.config import STORE_MAX_RETRIES
from progress_engine.exceptions import ConflictError, NotFoundError
from progress_engine.models.progress import UserProgress
from progress_engine.resilience.metrics import record_store_write
from progress_engine.resilience.retry import calculate_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProgressStore:
    """
    Base class for progress stores

    Subclasses implement the three storage primitives:
    - _load(user_id) -> snapshot or None
    - _insert(progress) -> False if the user already exists
    - _compare_and_swap(progress, expected_version) -> False on version mismatch
    """

    def __init__(self, max_retries: int = STORE_MAX_RETRIES, base_delay: float = 0.01):
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def _load(self, user_id: str) -> Optional[UserProgress]:
        raise NotImplementedError

    async def _insert(self, progress: UserProgress) -> bool:
        raise NotImplementedError

    async def _compare_and_swap(self, progress: UserProgress, expected_version: int) -> bool:
        raise NotImplementedError

    async def list_user_ids(self) -> list[str]:
        raise NotImplementedError

    async def create(self, user_id: str) -> UserProgress:
        """
        Create the progress record for a new user

        Returns the existing record unchanged if the user is already known.
        """
        progress = UserProgress(user_id=user_id)
        if await self._insert(progress):
            logger.info(f"Created progress record for user {user_id}")
            return progress
        return await self.get(user_id)

    async def get(self, user_id: str) -> UserProgress:
        """Read a snapshot of a user's progress"""
        progress = await self._load(user_id)
        if progress is None:
            raise NotFoundError(
                f"No progress record for user {user_id}",
                record_type="User",
                record_id=user_id,
                user_id=user_id,
                operation="get_progress"
            )
        return progress

    async def mutate(self, user_id: str, fn: Callable[[UserProgress], T]) -> T:
        """
        Apply fn to a fresh snapshot and commit it with a conditional write

        fn mutates the snapshot in place and returns the operation result.
        Exceptions raised by fn abort the mutation without writing anything.

        Raises:
            NotFoundError: user has no progress record
            ConflictError: every attempt lost the race
        """
        for attempt in range(self.max_retries + 1):
            snapshot = await self.get(user_id)
            expected_version = snapshot.version
            result = fn(snapshot)

            if await self._compare_and_swap(snapshot, expected_version):
                snapshot.version = expected_version + 1
                record_store_write("committed")
                return result

            record_store_write("conflict")
            if attempt == self.max_retries:
                break

            backoff = calculate_backoff(attempt, base_delay=self.base_delay)
            logger.info(
                f"[STORE] Version conflict for user {user_id} "
                f"(attempt {attempt + 1}/{self.max_retries}), retrying in {backoff:.3f}s"
            )
            await asyncio.sleep(backoff)

        record_store_write("exhausted")
        raise ConflictError(
            f"Could not commit progress update for user {user_id}",
            attempts=self.max_retries + 1,
            user_id=user_id,
            operation="mutate"
        )


class InMemoryProgressStore(ProgressStore):
    """
    Process-local store

    Documents are kept serialized so every snapshot handed out is an
    independent copy.
    """

    def __init__(self, max_retries: int = STORE_MAX_RETRIES, base_delay: float = 0.01):
        super().__init__(max_retries=max_retries, base_delay=base_delay)
        self._records: dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def _load(self, user_id: str) -> Optional[UserProgress]:
        data = self._records.get(user_id)
        if data is None:
            return None
        return UserProgress.model_validate_json(data["document"])

    async def _insert(self, progress: UserProgress) -> bool:
        async with self._lock:
            if progress.user_id in self._records:
                return False
            self._records[progress.user_id] = {
                "version": progress.version,
                "document": progress.model_dump_json(),
            }
            return True

    async def _compare_and_swap(self, progress: UserProgress, expected_version: int) -> bool:
        async with self._lock:
            current = self._records.get(progress.user_id)
            if current is None or current["version"] != expected_version:
                return False
            stored = progress.model_copy(update={"version": expected_version + 1})
            self._records[progress.user_id] = {
                "version": expected_version + 1,
                "document": stored.model_dump_json(),
            }
            return True

    async def list_user_ids(self) -> list[str]:
        return sorted(self._records)
