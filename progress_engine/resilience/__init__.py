"""Resilience patterns for the progress engine

This module provides the evaluator rate limiter, retry logic for lost
optimistic-write races, and metrics collection.
"""

from progress_engine.resilience.rate_limiter import RateLimiter
from progress_engine.resilience.retry import retry_with_backoff, with_retry, calculate_backoff
from progress_engine.resilience.metrics import (
    record_evaluator_call,
    record_rate_limit_wait,
    record_store_write,
    record_retry,
    record_completion,
    record_xp_awarded,
)

__all__ = [
    # Rate limiting
    "RateLimiter",
    # Retry
    "retry_with_backoff",
    "with_retry",
    "calculate_backoff",
    # Metrics
    "record_evaluator_call",
    "record_rate_limit_wait",
    "record_store_write",
    "record_retry",
    "record_completion",
    "record_xp_awarded",
]
