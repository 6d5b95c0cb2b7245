"""Task evaluator agent: LLM judgement of user-submitted tasks"""

from progress_engine.agent.task_evaluator import (
    TaskEvaluator,
    OpenAITaskEvaluator,
    normalize_evaluation,
    strip_code_fences,
)

__all__ = [
    "TaskEvaluator",
    "OpenAITaskEvaluator",
    "normalize_evaluation",
    "strip_code_fences",
]
