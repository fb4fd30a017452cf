"""Exception hierarchy and failure classification for rescoord.

Components of this layer signal ordinary outcomes (cache miss, rate limit
denial) through return values. Exceptions are reserved for failures:

    CoordinationError        (base)
    +-- BatchSizeMismatchError   (batch function returned wrong result count)
    +-- RateLimitExceededError   (caller asked for an exception on denial)
    +-- MaxRetryError            (retries and fallbacks exhausted)
    +-- ConfigurationError       (invalid configuration values)

Callers built on this layer classify arbitrary failures with
:func:`classify_error` and retry only the retryable classes.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class CoordinationError(Exception):
    """Base exception for all rescoord errors."""


class BatchSizeMismatchError(CoordinationError):
    """Raised to every caller of a flush whose results do not line up with its params."""

    def __init__(self, key: str, expected: int, received: int):
        self.key = key
        self.expected = expected
        self.received = received
        super().__init__(
            f"Batch function for '{key}' returned {received} results for {expected} queued calls"
        )


class RateLimitExceededError(CoordinationError):
    """Raised when a caller converts a rate limit denial into an error."""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        self.name = name
        self.retry_after = retry_after
        detail = f", retry after {retry_after:.2f}s" if retry_after is not None else ""
        super().__init__(f"Rate limit exceeded for '{name}'{detail}")


class MaxRetryError(CoordinationError):
    """Exception raised when max retries are exceeded."""

    def __init__(self, original_exception: BaseException, attempts: int):
        self.original_exception = original_exception
        self.attempts = attempts
        super().__init__(f"Max retries ({attempts}) exceeded. Last error: {original_exception}")


class ConfigurationError(CoordinationError):
    """Raised when configuration values are missing or invalid."""


# --- Failure Classification ---

class ErrorType(str, Enum):
    NETWORK = "NETWORK"
    UPSTREAM = "UPSTREAM"
    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    PERMISSION = "PERMISSION"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERROR_TYPES = frozenset({
    ErrorType.NETWORK,
    ErrorType.UPSTREAM,
    ErrorType.RATE_LIMIT,
    ErrorType.TIMEOUT,
})

USER_FRIENDLY_MESSAGES = {
    ErrorType.NETWORK: "Connection issue. Please check your connection and try again.",
    ErrorType.UPSTREAM: "Server error. Please try again in a moment.",
    ErrorType.VALIDATION: "The request was invalid.",
    ErrorType.AUTHENTICATION: "Authentication is required.",
    ErrorType.PERMISSION: "You do not have permission to perform this action.",
    ErrorType.RATE_LIMIT: "Too many requests. Please wait and try again.",
    ErrorType.TIMEOUT: "Request timed out. Please try again.",
    ErrorType.UNKNOWN: "An unexpected error occurred. Please try again.",
}


@dataclass
class ClassifiedError:
    """A failure tagged with its class and the context it happened in."""
    error_type: ErrorType
    message: str
    context: Optional[str] = None
    original: Optional[BaseException] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def retryable(self) -> bool:
        return self.error_type in RETRYABLE_ERROR_TYPES

    @property
    def user_friendly_message(self) -> str:
        return USER_FRIENDLY_MESSAGES[self.error_type]


def classify_error(error: BaseException, context: Optional[str] = None) -> ClassifiedError:
    """Maps an exception onto an :class:`ErrorType`.

    Exception types are checked first; the message is only inspected for
    errors that carry no more specific type.

    Args:
        error: The exception raised by the failing action.
        context: Logical context the failure belongs to (e.g., 'news.fetch').

    Returns:
        The classified error.
    """
    message = str(error)
    lowered = message.lower()

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        error_type = ErrorType.TIMEOUT
    elif isinstance(error, RateLimitExceededError):
        error_type = ErrorType.RATE_LIMIT
    elif isinstance(error, PermissionError):
        error_type = ErrorType.PERMISSION
    elif isinstance(error, ConnectionError):
        error_type = ErrorType.NETWORK
    elif isinstance(error, (ValueError, TypeError, KeyError)):
        error_type = ErrorType.VALIDATION
    elif "rate limit" in lowered or "429" in lowered:
        error_type = ErrorType.RATE_LIMIT
    elif "timeout" in lowered or "timed out" in lowered:
        error_type = ErrorType.TIMEOUT
    elif "unauthorized" in lowered or "401" in lowered:
        error_type = ErrorType.AUTHENTICATION
    elif "forbidden" in lowered or "403" in lowered:
        error_type = ErrorType.PERMISSION
    elif "connection" in lowered or "network" in lowered:
        error_type = ErrorType.NETWORK
    elif any(code in lowered for code in ("500", "502", "503", "504")):
        error_type = ErrorType.UPSTREAM
    else:
        error_type = ErrorType.UNKNOWN

    return ClassifiedError(error_type=error_type, message=message, context=context, original=error)
