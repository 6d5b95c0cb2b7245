"""Prometheus metrics for the progress engine

Exposes counters for evaluator calls, rate-limit waits, store write
conflicts, completions and XP awards. Metrics are exposed on an HTTP
endpoint for scraping by Prometheus (see main.py).
"""

import logging
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# Evaluator calls counter
# Labels: status (success/failure/rate_limited)
evaluator_calls_total = Counter(
    'progress_evaluator_calls_total',
    'Total number of task evaluator calls',
    ['status']
)

# Evaluator call duration histogram
evaluator_call_duration = Histogram(
    'progress_evaluator_call_duration_seconds',
    'Duration of task evaluator calls in seconds',
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float('inf'))
)

# Rate limiter waits
rate_limit_waits_total = Counter(
    'progress_rate_limit_waits_total',
    'Number of evaluator calls that had to wait for the minimum interval'
)

rate_limit_wait_seconds = Histogram(
    'progress_rate_limit_wait_seconds',
    'Time spent waiting on the evaluator rate limiter',
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, float('inf'))
)

# Optimistic write outcomes
# Labels: outcome (committed/conflict/exhausted)
store_writes_total = Counter(
    'progress_store_writes_total',
    'Progress store conditional writes by outcome',
    ['outcome']
)

# Retry attempts counter
# Labels: operation
retries_total = Counter(
    'progress_retries_total',
    'Total number of retry attempts',
    ['operation']
)

# Completions counter
# Labels: type (normal/habit/challenge/...)
completions_total = Counter(
    'progress_completions_total',
    'Recorded completion events',
    ['type']
)

# XP awarded counter
# Labels: category
xp_awarded_total = Counter(
    'progress_xp_awarded_total',
    'XP awarded per category',
    ['category']
)


def record_evaluator_call(status: str, duration: float) -> None:
    """
    Record evaluator call metrics.

    Args:
        status: success, failure or rate_limited
        duration: Call duration in seconds
    """
    try:
        evaluator_calls_total.labels(status=status).inc()
        evaluator_call_duration.observe(duration)
        logger.debug(f"[METRICS] Evaluator call: {status}, duration: {duration:.2f}s")
    except Exception as e:
        logger.error(f"Failed to record evaluator call metrics: {e}")


def record_rate_limit_wait(wait: float) -> None:
    try:
        rate_limit_waits_total.inc()
        rate_limit_wait_seconds.observe(wait)
        logger.debug(f"[METRICS] Rate limiter wait: {wait:.2f}s")
    except Exception as e:
        logger.error(f"Failed to record rate limit wait: {e}")


def record_store_write(outcome: str) -> None:
    """
    Record a conditional write outcome.

    Args:
        outcome: committed, conflict or exhausted
    """
    try:
        store_writes_total.labels(outcome=outcome).inc()
        logger.debug(f"[METRICS] Store write: {outcome}")
    except Exception as e:
        logger.error(f"Failed to record store write: {e}")


def record_retry(operation: str) -> None:
    """
    Record retry attempt.

    Args:
        operation: Name of the retried coroutine
    """
    try:
        retries_total.labels(operation=operation).inc()
        logger.debug(f"[METRICS] Retry attempt for {operation}")
    except Exception as e:
        logger.error(f"Failed to record retry: {e}")


def record_completion(completion_type: str) -> None:
    try:
        completions_total.labels(type=completion_type).inc()
    except Exception as e:
        logger.error(f"Failed to record completion: {e}")


def record_xp_awarded(awarded: dict[str, int]) -> None:
    """Record XP per category for one award"""
    try:
        for category, amount in awarded.items():
            xp_awarded_total.labels(category=category).inc(amount)
    except Exception as e:
        logger.error(f"Failed to record XP award: {e}")
