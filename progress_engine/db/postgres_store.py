"""PostgreSQL-backed progress store and catalogs

The progress document lives in a JSONB column next to an integer version;
the conditional write is an UPDATE guarded on that version.
"""
import logging
from typing import Optional

import psycopg

from progress_engine.config import STORE_MAX_RETRIES
from progress_engine.db.catalog import ChallengeCatalog, TaskCatalog
from progress_engine.db.connection import Database
from progress_engine.exceptions import wrap_external_exception
from progress_engine.models.challenge import ChallengeTemplate
from progress_engine.models.progress import UserProgress
from progress_engine.models.task import Task
from progress_engine.db.store import ProgressStore

logger = logging.getLogger(__name__)


class PostgresProgressStore(ProgressStore):
    """Progress store on the user_progress table"""

    def __init__(self, database: Database, max_retries: int = STORE_MAX_RETRIES, base_delay: float = 0.01):
        super().__init__(max_retries=max_retries, base_delay=base_delay)
        self.database = database

    @staticmethod
    def _document(progress: UserProgress) -> str:
        return progress.model_dump_json(exclude={"version"}, exclude_none=True)

    async def _load(self, user_id: str) -> Optional[UserProgress]:
        query = "SELECT version, data FROM user_progress WHERE user_id = %s"
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (user_id,))
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="load_progress", user_id=user_id, context={"query": query})

        if row is None:
            return None
        return UserProgress.model_validate({**row["data"], "user_id": user_id, "version": row["version"]})

    async def _insert(self, progress: UserProgress) -> bool:
        query = (
            "INSERT INTO user_progress (user_id, version, data) VALUES (%s, %s, %s) "
            "ON CONFLICT (user_id) DO NOTHING"
        )
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (progress.user_id, progress.version, self._document(progress)))
                    inserted = cur.rowcount == 1
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(
                e, operation="create_progress", user_id=progress.user_id, context={"query": query}
            )
        return inserted

    async def _compare_and_swap(self, progress: UserProgress, expected_version: int) -> bool:
        query = """
            UPDATE user_progress
            SET data = %s, version = version + 1, updated_at = now()
            WHERE user_id = %s AND version = %s
        """
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (self._document(progress), progress.user_id, expected_version))
                    swapped = cur.rowcount == 1
                await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(
                e, operation="save_progress", user_id=progress.user_id, context={"query": query}
            )
        if not swapped:
            logger.debug(f"Version {expected_version} of user {progress.user_id} is stale")
        return swapped

    async def list_user_ids(self) -> list[str]:
        query = "SELECT user_id FROM user_progress ORDER BY user_id"
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="list_users", context={"query": query})
        return [row["user_id"] for row in rows]


class PostgresTaskCatalog(TaskCatalog):
    """Task catalog on the task_catalog table"""

    def __init__(self, database: Database):
        self.database = database

    async def get_task(self, task_id: str) -> Optional[Task]:
        query = "SELECT data FROM task_catalog WHERE task_id = %s"
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (task_id,))
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="get_task", context={"task_id": task_id})
        return Task.model_validate({**row["data"], "id": task_id}) if row else None

    async def list_tasks(self) -> list[Task]:
        query = "SELECT task_id, data FROM task_catalog ORDER BY task_id"
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="list_tasks")
        return [Task.model_validate({**row["data"], "id": row["task_id"]}) for row in rows]


class PostgresChallengeCatalog(ChallengeCatalog):
    """Challenge template catalog on the challenge_catalog table"""

    def __init__(self, database: Database):
        self.database = database

    async def get_challenge(self, challenge_id: str) -> Optional[ChallengeTemplate]:
        query = "SELECT data FROM challenge_catalog WHERE challenge_id = %s"
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (challenge_id,))
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="get_challenge", context={"challenge_id": challenge_id})
        return ChallengeTemplate.model_validate({**row["data"], "id": challenge_id}) if row else None

    async def list_challenges(self) -> list[ChallengeTemplate]:
        query = "SELECT challenge_id, data FROM challenge_catalog ORDER BY challenge_id"
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="list_challenges")
        return [ChallengeTemplate.model_validate({**row["data"], "id": row["challenge_id"]}) for row in rows]
