"""Task evaluator: judges user-submitted tasks for validity, safety and XP"""
import json
import logging
import time
from typing import Optional

from openai import AsyncOpenAI
import openai
from pydantic import ValidationError as PydanticValidationError

from progress_engine.config import (
    EVALUATOR_MAX_TOKENS,
    EVALUATOR_MODEL,
    EVALUATOR_TEMPERATURE,
    OPENAI_API_KEY,
)
from progress_engine.exceptions import (
    ConfigurationError,
    EvaluatorError,
    RateLimitedError,
    wrap_external_exception,
)
from progress_engine.models.category import CATEGORIES, normalize_category_id
from progress_engine.models.task import TaskEvaluation
from progress_engine.gamification.xp_system import normalize_category_xp
from progress_engine.resilience.metrics import record_evaluator_call
from progress_engine.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = f"""You are a friendly and supportive coach for a self-improvement app. \
Your role is to help users create meaningful tasks that contribute to their personal growth, \
while keeping them safe and motivated.

Available Categories: {", ".join(f"{c.name}({c.id})" for c in CATEGORIES)}

XP Guidelines:
- Quick (10-20): Simple tasks, under 30min
- Medium (30-50): Tasks taking 30min-2hrs
- Hard (60-80): Challenging tasks, 2+ hrs
- Major (90-100): Long-term transformative goals

Safety & Quality Guidelines:
1. Task should promote positive growth and well-being
2. Should be specific and measurable
3. Must align with self-improvement goals
4. Must prioritize the user's health and safety

Reject harmful substances or activities, excessive or unhealthy behaviors, dangerous
physical challenges, activities that could harm mental health, illegal or unethical
actions, extreme dietary restrictions and risky social behaviors.

Return valid JSON only:
{{
  "isValid": boolean,
  "categories": string[],
  "categoryXp": {{"<category id>": number}},
  "feedback": string,
  "title": string,
  "description": string,
  "tags": string[],
  "safetyCheck": {{
    "passed": boolean,
    "concerns": string[],
    "suggestions": string[]
  }}
}}

IMPORTANT: use the lowercase category id (e.g. "physical", not "Physical") in
categories and categoryXp. Keep feedback encouraging and specific.
"""


def strip_code_fences(content: str) -> str:
    """Remove markdown code block wrappers around a JSON answer"""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def normalize_evaluation(evaluation: TaskEvaluation) -> TaskEvaluation:
    """
    Map categories to catalog ids and clamp XP

    Only applied to valid, safe evaluations; rejected ones are returned as is.
    """
    if not (evaluation.is_valid and evaluation.safety_check and evaluation.safety_check.passed):
        return evaluation

    categories = []
    for name in evaluation.categories:
        category_id = normalize_category_id(name)
        if category_id and category_id not in categories:
            categories.append(category_id)

    category_xp = normalize_category_xp(evaluation.category_xp)
    return evaluation.model_copy(update={"categories": categories, "category_xp": category_xp})


class TaskEvaluator:
    """Contract for task evaluators"""

    async def evaluate(self, title: str, description: str) -> TaskEvaluation:
        raise NotImplementedError


class OpenAITaskEvaluator(TaskEvaluator):
    """
    Chat-completion backed evaluator

    Every call waits on the shared RateLimiter first. Backpressure from the
    API is surfaced as RateLimitedError and never retried here.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        client: Optional[AsyncOpenAI] = None,
        model: str = EVALUATOR_MODEL,
        temperature: float = EVALUATOR_TEMPERATURE,
        max_tokens: int = EVALUATOR_MAX_TOKENS
    ):
        if client is None:
            if not OPENAI_API_KEY:
                raise ConfigurationError(
                    "OPENAI_API_KEY is required for task evaluation",
                    config_key="OPENAI_API_KEY"
                )
            client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        self.client = client
        self.rate_limiter = rate_limiter
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def evaluate(self, title: str, description: str) -> TaskEvaluation:
        await self.rate_limiter.acquire()
        started = time.monotonic()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Title: {title}\nDesc: {description}"},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            error = wrap_external_exception(
                e, operation="evaluate_task", context={"title": title}
            )
            status = "rate_limited" if isinstance(error, RateLimitedError) else "failure"
            record_evaluator_call(status, time.monotonic() - started)
            raise error

        content = response.choices[0].message.content or ""
        logger.debug(f"Evaluator response: {content[:200]}")

        try:
            data = json.loads(strip_code_fences(content))
            evaluation = TaskEvaluation.model_validate(data)
        except (json.JSONDecodeError, PydanticValidationError) as e:
            record_evaluator_call("failure", time.monotonic() - started)
            raise EvaluatorError(
                "Failed to parse task evaluation response",
                operation="evaluate_task",
                context={"title": title},
                cause=e
            )

        record_evaluator_call("success", time.monotonic() - started)
        evaluation = normalize_evaluation(evaluation)
        logger.info(
            f"Evaluated task '{title}': valid={evaluation.is_valid}, "
            f"safe={bool(evaluation.safety_check and evaluation.safety_check.passed)}"
        )
        return evaluation
