"""Main entry point: daily maintenance sweep over every user's progress"""
import logging
import asyncio
from typing import Dict

from prometheus_client import start_http_server

from progress_engine.config import validate_config, LOG_LEVEL, METRICS_PORT
from progress_engine.db.connection import Database
from progress_engine.db.postgres_store import (
    PostgresChallengeCatalog,
    PostgresProgressStore,
    PostgresTaskCatalog,
)
from progress_engine.exceptions import ProgressEngineError
from progress_engine.models.goal import GoalTimeframe
from progress_engine.resilience.retry import retry_with_backoff
from progress_engine.services.container import EngineContainer, init_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


async def sweep_user(container: EngineContainer, user_id: str) -> Dict[str, int]:
    """
    Run the idempotent daily housekeeping for one user

    - detect missed habit days (before the daily flags are cleared)
    - clear habits' completed-today flags
    - report failed challenge attempts
    - archive goals whose period ended
    """
    missed = await retry_with_backoff(container.habits.check_and_handle_missed_days, user_id)
    reset = await retry_with_backoff(container.habits.reset_daily_status, user_id)
    failed = await container.challenge_engine.check_failed_challenges(user_id)
    live_goals = 0
    for timeframe in GoalTimeframe:
        goals = await retry_with_backoff(container.goals.get_goals_by_timeframe, user_id, timeframe)
        live_goals += len(goals)

    return {
        "missed_habits": len(missed),
        "habits_reset": reset,
        "failed_challenges": len(failed),
        "live_goals": live_goals,
    }


async def run_sweep(container: EngineContainer) -> Dict[str, int]:
    """Sweep every known user; one user's failure does not stop the others"""
    user_ids = await container.store.list_user_ids()
    logger.info(f"Sweeping {len(user_ids)} user(s)")

    swept = 0
    failed = 0
    for user_id in user_ids:
        try:
            summary = await sweep_user(container, user_id)
            swept += 1
            logger.debug(f"Swept user {user_id}: {summary}")
        except ProgressEngineError as e:
            failed += 1
            logger.error(f"Sweep failed for user {user_id}: {e.message} (request_id={e.request_id})")

    logger.info(f"Sweep complete: {swept} ok, {failed} failed")
    return {"swept": swept, "failed": failed}


async def main() -> None:
    """Main application entry point"""
    db = Database()
    try:
        # Validate configuration
        logger.info("Validating configuration...")
        validate_config()

        if METRICS_PORT:
            logger.info(f"Exposing metrics on port {METRICS_PORT}")
            start_http_server(METRICS_PORT)

        # Initialize database
        logger.info("Initializing database connection pool...")
        await db.init_pool()
        await db.ensure_schema()

        container = init_container(
            store=PostgresProgressStore(db),
            tasks=PostgresTaskCatalog(db),
            challenges=PostgresChallengeCatalog(db),
        )

        await run_sweep(container)

    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Closing database connection...")
        await db.close_pool()

        logger.info("Shutdown complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
