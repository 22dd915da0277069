"""
Error classification and retry for workflow execution.

Implements:
- Error classification (retryable vs permanent) for execution events
- Retry with exponential backoff for node-level retry (HTTP request node)

The engine itself never retries: a failed node halts the run.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from typeflow.workflows.engine.constants import ExecutionConfig
from typeflow.workflows.engine.errors import (
    CodeExecutionError,
    CodeValidationError,
    ExecutionTimeoutError,
    NodeConfigurationError,
    ThrowErrorNodeError,
)

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Classification of errors for handling decisions."""
    CREDENTIAL_MISSING = "credential_missing"
    CONFIGURATION_ERROR = "configuration_error"
    CODE_VALIDATION = "code_validation"
    CODE_RUNTIME = "code_runtime"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    USER_ABORT = "user_abort"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Structured error information for logging and decisions."""
    category: ErrorCategory
    message: str
    original_error: str
    is_retryable: bool
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "original_error": self.original_error,
            "is_retryable": self.is_retryable,
            "suggestion": self.suggestion,
        }


class ErrorClassifier:
    """Classifies errors and determines handling strategy."""

    # Typed engine errors win over message patterns
    TYPED = (
        (CodeValidationError, ErrorCategory.CODE_VALIDATION),
        (ExecutionTimeoutError, ErrorCategory.TIMEOUT),
        (CodeExecutionError, ErrorCategory.CODE_RUNTIME),
        (ThrowErrorNodeError, ErrorCategory.USER_ABORT),
        (NodeConfigurationError, ErrorCategory.CONFIGURATION_ERROR),
        (asyncio.TimeoutError, ErrorCategory.TIMEOUT),
        (ConnectionError, ErrorCategory.NETWORK_ERROR),
    )

    PATTERNS = {
        ErrorCategory.CREDENTIAL_MISSING: [
            "no credential configured", "credential not found",
        ],
        ErrorCategory.CONFIGURATION_ERROR: [
            "requires a", "no workflow configured", "unknown node type", "unknown credential type",
        ],
        ErrorCategory.RATE_LIMITED: [
            "rate limit", "too many requests", "429", "quota exceeded",
        ],
        ErrorCategory.TIMEOUT: [
            "timeout", "timed out", "deadline exceeded",
        ],
        ErrorCategory.NETWORK_ERROR: [
            "connection refused", "connection reset", "network unreachable",
            "name or service not known", "dns", "ssl", "certificate", "connecterror",
        ],
        ErrorCategory.EXTERNAL_SERVICE_ERROR: [
            "500", "502", "503", "504", "internal server error", "service unavailable",
        ],
    }

    # Categories that are safe to retry
    RETRYABLE_CATEGORIES = {
        ErrorCategory.RATE_LIMITED,
        ErrorCategory.NETWORK_ERROR,
        ErrorCategory.TIMEOUT,
        ErrorCategory.EXTERNAL_SERVICE_ERROR,
    }

    SUGGESTIONS = {
        ErrorCategory.CREDENTIAL_MISSING: "Configure the required credential in the node settings.",
        ErrorCategory.CONFIGURATION_ERROR: "Review and fix the node configuration.",
        ErrorCategory.CODE_VALIDATION: "Fix the reported lines in the code node.",
        ErrorCategory.CODE_RUNTIME: "Check the code node for the failing statement.",
        ErrorCategory.TIMEOUT: "The operation took too long. Try with smaller data or increase timeout.",
        ErrorCategory.RATE_LIMITED: "Wait a moment and try again, or reduce request frequency.",
        ErrorCategory.NETWORK_ERROR: "Check your network connection and try again.",
        ErrorCategory.EXTERNAL_SERVICE_ERROR: "The external service is having issues. Try again later.",
        ErrorCategory.USER_ABORT: "The workflow stopped on a Throw Error node.",
        ErrorCategory.UNKNOWN: "An unexpected error occurred. Check the logs for details.",
    }

    @classmethod
    def classify(cls, error: BaseException) -> ErrorContext:
        """Classify an error and return structured context."""
        original_error = str(error) or type(error).__name__
        error_str = f"{type(error).__name__} {original_error}".lower()

        matched_category = ErrorCategory.UNKNOWN
        for error_type, category in cls.TYPED:
            if isinstance(error, error_type):
                matched_category = category
                break
        else:
            for category, patterns in cls.PATTERNS.items():
                if any(pattern in error_str for pattern in patterns):
                    matched_category = category
                    break

        return ErrorContext(
            category=matched_category,
            message=original_error,
            original_error=original_error,
            is_retryable=matched_category in cls.RETRYABLE_CATEGORIES,
            suggestion=cls.SUGGESTIONS.get(matched_category),
        )


class RetryHandler:
    """Re-runs a coroutine function while its failures classify as retryable."""

    @staticmethod
    def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
        """Delay before retry number `attempt` (1-based): base, 2x base, 4x base, ... capped."""
        return min(base_delay * 2 ** (attempt - 1), max_delay)

    @classmethod
    async def execute_with_retry(
        cls,
        func: Callable[[], Awaitable[Any]],
        max_attempts: int = ExecutionConfig.DEFAULT_MAX_RETRIES + 1,
        base_delay: float = ExecutionConfig.DEFAULT_RETRY_BASE_DELAY,
        max_delay: float = ExecutionConfig.DEFAULT_RETRY_MAX_DELAY,
    ) -> Tuple[Any, int]:
        """
        Returns `(result, attempts)`. A permanent failure is raised at once;
        a retryable one is raised after the last attempt.
        """
        attempt = 1
        while True:
            try:
                return await func(), attempt
            except Exception as e:
                context = ErrorClassifier.classify(e)
                if not context.is_retryable:
                    raise
                if attempt >= max_attempts:
                    logger.error(f"Giving up after {attempt} attempts: {e}")
                    raise
                delay = cls.backoff_delay(attempt, base_delay, max_delay)
                logger.warning(f"Attempt {attempt}/{max_attempts} failed ({context.category.value}): {e}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                attempt += 1
