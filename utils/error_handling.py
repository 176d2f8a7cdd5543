"""
Error handling utilities: lifecycle exception types, outcome categories and
retry logic for transient storage failures
"""

import logging
import random
import time
from enum import Enum
from typing import Optional, Callable
from functools import wraps
from dataclasses import dataclass

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

class ErrorCategory(Enum):
    """Categorize errors and non-fatal outcomes for proper handling"""
    INSUFFICIENT_SAMPLES = "insufficient_samples"  # Returned, never raised
    SPLIT_FAILED = "split_failed"  # Returned, never raised
    TRAINER_FAILURE = "trainer_failure"  # Caught and wrapped into the result
    CANCELLED = "cancelled"  # Distinguished from failure
    MODEL = "model"  # Missing artifacts, regression blocks
    STORAGE = "storage"  # Persistence I/O failures
    TRANSIENT = "transient"  # Can retry

class LifecycleError(Exception):
    """Base class for lifecycle engine errors"""

    def __init__(self, message: str, stage: str = "lifecycle", error_code: str = "LIFECYCLE_ERROR"):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.error_code = error_code

class StorageError(LifecycleError):
    """Raised when the annotation store cannot complete an operation"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message, stage="Storage", error_code="STORAGE_ERROR")
        self.operation = operation

class ModelError(LifecycleError):
    """Raised for missing model artifacts and regression-gate blocks"""

    def __init__(self, message: str, model_name: Optional[str] = None, model_path: Optional[str] = None):
        super().__init__(message, stage="Model", error_code="MODEL_ERROR")
        self.model_name = model_name
        self.model_path = model_path

class TrainingCancelled(LifecycleError):
    """Raised cooperatively when a cancellation token has been triggered"""

    def __init__(self, message: str = "Training was cancelled"):
        super().__init__(message, stage="Training", error_code="CANCELLED")

def describe_exception(error: BaseException) -> str:
    """Flatten an exception and its cause chain into a single message.

    ``TrainerError: boom (caused by: OSError: disk full)``
    """
    parts = [f"{type(error).__name__}: {error}"]
    seen = {id(error)}
    inner = error.__cause__ or error.__context__

    while inner is not None and id(inner) not in seen:
        seen.add(id(inner))
        parts.append(f"caused by: {type(inner).__name__}: {inner}")
        inner = inner.__cause__ or inner.__context__

    if len(parts) == 1:
        return parts[0]
    return parts[0] + " (" + "; ".join(parts[1:]) + ")"

def categorize_error(error: Exception) -> ErrorCategory:
    """Categorize an error for proper handling"""
    if isinstance(error, TrainingCancelled):
        return ErrorCategory.CANCELLED

    if isinstance(error, ModelError):
        return ErrorCategory.MODEL

    error_msg = str(error).lower()

    # SQLite writer contention clears once the other transaction commits
    if isinstance(error, OperationalError) and (
        "database is locked" in error_msg or "database is busy" in error_msg
    ):
        return ErrorCategory.TRANSIENT

    if isinstance(error, StorageError):
        return ErrorCategory.STORAGE

    return ErrorCategory.TRAINER_FAILURE

@dataclass
class RetryConfig:
    """Configuration for retry logic"""
    max_attempts: int = 3
    initial_delay: float = 0.05
    max_delay: float = 1.0
    exponential_base: float = 2.0
    jitter: bool = True

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt with exponential backoff"""
        delay = min(
            self.initial_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        if self.jitter:
            delay *= (0.5 + random.random())

        return delay

def retry_with_backoff(
    func: Optional[Callable] = None,
    *,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable] = None
):
    """
    Decorator retrying transient errors with exponential backoff

    Usage:
        @retry_with_backoff(config=RetryConfig(max_attempts=5))
        def save_row(...):
            ...
    """
    if config is None:
        config = RetryConfig()

    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    return f(*args, **kwargs)
                except Exception as e:
                    if categorize_error(e) != ErrorCategory.TRANSIENT:
                        raise

                    if attempt >= config.max_attempts - 1:
                        logger.error(f"All {config.max_attempts} attempts of {f.__name__} failed")
                        raise

                    delay = config.get_delay(attempt)
                    logger.warning(
                        f"Attempt {attempt + 1}/{config.max_attempts} of {f.__name__} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        on_retry(attempt, e, delay)

                    time.sleep(delay)

        return wrapper

    # Handle direct decoration
    if func is not None:
        return decorator(func)

    return decorator

# Export commonly used items
__all__ = [
    'ErrorCategory',
    'LifecycleError',
    'StorageError',
    'ModelError',
    'TrainingCancelled',
    'describe_exception',
    'categorize_error',
    'RetryConfig',
    'retry_with_backoff'
]
