"""
Service Layer Package

Task-level services and the container that wires every engine.

Core Services:
- TaskCompletionService: active tasks and exactly-once daily completions
- UserGeneratedTaskService: evaluator-gated creation of user tasks
- EngineContainer: lazy wiring of store, catalogs, clock and engines
"""

from progress_engine.services.container import EngineContainer, get_container, init_container
from progress_engine.services.task_service import TaskCompletionService
from progress_engine.services.user_task_service import UserGeneratedTaskService, CreatedTask

__all__ = [
    "EngineContainer",
    "get_container",
    "init_container",
    "TaskCompletionService",
    "UserGeneratedTaskService",
    "CreatedTask",
]
