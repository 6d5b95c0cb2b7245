"""
Standardized exception hierarchy for the progress engine
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class ProgressEngineError(Exception):
    """
    Base exception for all progress engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise ProgressEngineError(
            message="Failed to save habit",
            user_id="user-1",
            operation="create_habit",
            context={"habit_id": "abc-123"}
        )
    """

    # Expected outcomes (duplicates, safety rejections) override this
    log_level = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,  # Avoid conflict with logging's 'context'
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(ProgressEngineError):
    """
    Raised when user input fails validation

    Examples:
    - Habit created without a motivation text
    - Habit created without a task selected
    - Goal without a description

    Example:
        raise ValidationError(
            message="A reason is required",
            field="reason",
            value="",
            user_id="user-1"
        )
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        kwargs.setdefault("user_message", f"Invalid {field}: {message}" if field else message)
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "field": field, "value": value},
            **kwargs
        )


# ==========================================
# Domain Outcome Errors
# ==========================================

class DuplicateError(ProgressEngineError):
    """
    Near-duplicate task/habit, or an already-active challenge

    Terminal for the attempted operation. `existing` carries the entity
    the candidate collided with so it can be offered to the user instead.
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        existing: Optional[Any] = None,
        **kwargs
    ):
        self.existing = existing
        kwargs.setdefault("user_message", "Something very similar already exists. Try a different angle!")
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "existing_id": getattr(existing, "id", None)},
            **kwargs
        )


class DuplicateHabitError(DuplicateError):
    """A habit with the same title and task already exists"""

    def __init__(self, message: str = "A similar habit already exists", **kwargs):
        kwargs.setdefault("user_message", "You already have this habit. Keep building it!")
        super().__init__(message=message, **kwargs)


class ChallengeAlreadyActiveError(DuplicateError):
    """User tried to join a challenge they are already running"""

    def __init__(self, message: str = "Challenge already active", **kwargs):
        kwargs.setdefault("user_message", "You're already working on this challenge.")
        super().__init__(message=message, **kwargs)


class SafetyRejectedError(ProgressEngineError):
    """
    Task evaluator safety check failed

    Not a hard failure: the task is simply not created. Concerns,
    suggestions and the evaluator feedback are surfaced to the user.
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Task failed the safety check",
        concerns: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
        feedback: str = "",
        **kwargs
    ):
        self.concerns = concerns or []
        self.suggestions = suggestions or []
        self.feedback = feedback
        user_message = (
            f"Task creation failed due to safety concerns: {', '.join(self.concerns)}. "
            f"Suggestions: {', '.join(self.suggestions)}"
        )
        kwargs.setdefault("user_message", user_message)
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "concerns": self.concerns, "suggestions": self.suggestions},
            **kwargs
        )


class InvalidStateError(ProgressEngineError):
    """Operation not permitted in the entity's current state"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        **kwargs
    ):
        self.current_state = current_state
        kwargs.setdefault("user_message", message)
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "current_state": current_state},
            **kwargs
        )


class NotFoundError(ProgressEngineError):
    """Referenced task/habit/goal/challenge/user does not exist"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        kwargs.setdefault("user_message", f"{record_type or 'Record'} not found.")
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "record_type": record_type, "record_id": record_id},
            **kwargs
        )


# ==========================================
# Transient Errors (caller retries)
# ==========================================

class ConflictError(ProgressEngineError):
    """Optimistic write lost a race and retries were exhausted"""

    def __init__(
        self,
        message: str = "Concurrent update conflict",
        attempts: Optional[int] = None,
        **kwargs
    ):
        self.attempts = attempts
        kwargs.setdefault("user_message", "Your progress changed while saving. Please try again.")
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "attempts": attempts},
            **kwargs
        )


class RateLimitedError(ProgressEngineError):
    """Task evaluator signalled backpressure"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again in a minute.",
        retry_after: Optional[float] = None,
        **kwargs
    ):
        self.retry_after = retry_after
        kwargs.setdefault("user_message", "Taking a quick breather! Please try again in a moment.")
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "retry_after": retry_after},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(ProgressEngineError):
    """
    Base class for progress store errors
    """
    pass


class StoreConnectionError(DatabaseError):
    """Database connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your progress. Please try again.",
            context={**(kwargs.pop("context", None) or {}), "query": query},
            **kwargs
        )


# ==========================================
# External API Errors
# ==========================================

class ExternalAPIError(ProgressEngineError):
    """
    Base class for external API failures
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        kwargs.setdefault(
            "user_message",
            f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
        )
        super().__init__(
            message=message,
            context={**(kwargs.pop("context", None) or {}), "service": service, "status_code": status_code},
            **kwargs
        )


class EvaluatorError(ExternalAPIError):
    """Task evaluator call failed or returned an unusable answer"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("user_message", "Small technical glitch! Let's try creating that task again.")
        super().__init__(
            message=message,
            service="Task Evaluator",
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(ProgressEngineError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={**(kwargs.pop("context", None) or {}), "config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> ProgressEngineError:
    """
    Wrap external exceptions (psycopg, httpx, openai) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate ProgressEngineError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="load_progress",
                user_id="user-1",
                context={"query": query}
            )
    """
    # Import here to avoid circular dependencies
    import httpx
    import openai
    import psycopg

    # Database errors
    if isinstance(error, psycopg.OperationalError):
        return StoreConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Evaluator backpressure
    elif isinstance(error, openai.RateLimitError):
        return RateLimitedError(
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, openai.APIStatusError) and error.status_code == 429:
        return RateLimitedError(
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, openai.OpenAIError):
        return EvaluatorError(
            message=f"Evaluator request failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # HTTP errors
    elif isinstance(error, httpx.TimeoutException):
        return ExternalAPIError(
            message=f"API request timed out: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return RateLimitedError(
                user_id=user_id,
                operation=operation,
                context=context,
                cause=error
            )
        return ExternalAPIError(
            message=f"API returned error: {error.response.status_code}",
            status_code=error.response.status_code,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Generic fallback
    else:
        return ProgressEngineError(
            message=f"{operation} failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
