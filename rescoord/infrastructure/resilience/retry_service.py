"""Service for executing actions with automatic retries.

Failures are classified (see ``classify_error``); only retryable classes
(network, upstream, rate limit, timeout) are retried, with exponential
backoff capped at ``max_backoff_s``. Retry counts are tracked per logical
context and reset on success, so a context that keeps failing across calls
does not retry without bound. Once retries are exhausted an optional cached
value is used as fallback before ``MaxRetryError`` is raised.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from rescoord.domain.events.coordination_events import RetryScheduled, dispatch_event
from rescoord.domain.interfaces.cache import CacheService
from rescoord.domain.models.common import BackoffPolicy, CacheKey
from rescoord.domain.models.errors import MaxRetryError, classify_error
from rescoord.infrastructure.resilience.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF_S = 1.0
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_BACKOFF_S = 60.0

class RetryService:
    """Handles action execution with rate limiting, retries, and cache fallback."""

    def __init__(
        self,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        cache_service: Optional[CacheService] = None,  # Optional: For cache fallback
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff_s: float = DEFAULT_INITIAL_BACKOFF_S,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        max_backoff_s: float = DEFAULT_MAX_BACKOFF_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the RetryService.

        Args:
            rate_limiter: Optional limiter every attempt waits on.
            cache_service: Optional cache service for fallback.
            max_retries: Maximum number of retries per context.
            initial_backoff_s: Delay in seconds before the first retry.
            backoff_factor: Multiplier for the backoff delay (e.g., 2 for exponential).
            max_backoff_s: Upper bound for a single delay.
            sleep: Coroutine function used to wait between attempts.
        """
        self.rate_limiter = rate_limiter
        self.cache_service = cache_service
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        self.max_backoff_s = max_backoff_s
        self._sleep = sleep
        self._retry_attempts: Dict[str, int] = {}

        logger.info(
            f"RetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}, cap={max_backoff_s}s"
        )

    @classmethod
    def from_policy(cls, policy: BackoffPolicy, **kwargs: Any) -> "RetryService":
        return cls(
            max_retries=policy["max_retries"],
            initial_backoff_s=policy["initial_delay"],
            backoff_factor=policy["factor"],
            max_backoff_s=policy["max_delay"],
            **kwargs,
        )

    # --- Per-Context Retry Accounting ---

    def get_retry_count(self, context: str) -> int:
        return self._retry_attempts.get(context, 0)

    def clear_retry_count(self, context: str) -> None:
        self._retry_attempts.pop(context, None)

    def clear_all_retry_counts(self) -> None:
        self._retry_attempts.clear()

    def compute_backoff(self, retry_number: int) -> float:
        """Delay before retry number ``retry_number`` (0-based)."""
        return min(self.initial_backoff_s * (self.backoff_factor ** retry_number), self.max_backoff_s)

    # --- Execution ---

    async def execute_with_retry(
        self,
        func: Callable[..., Any],
        *args: Any,
        context: Optional[str] = None,
        cache_key: Optional[CacheKey] = None,
        use_cache_fallback: bool = True,
        **kwargs: Any,
    ) -> Any:
        """Executes ``func`` with rate limiting, retries, and cache fallback.

        Args:
            func: The function (sync or coroutine function) to execute.
            *args: Positional arguments for the function.
            context: Logical context for retry accounting (defaults to the function name).
            cache_key: Optional key to read a fallback value from.
            use_cache_fallback: Whether to attempt fallback to cache.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call or a cached fallback.

        Raises:
            MaxRetryError: If the context ran out of retries and no fallback exists.
            Exception: If a non-retryable exception occurs.
        """
        effective_context = context or getattr(func, "__name__", "action")
        last_exception: Optional[Exception] = None
        attempts = 0

        while True:
            attempts += 1
            recorded: Optional[float] = None
            try:
                if self.rate_limiter is not None:
                    recorded = await self.rate_limiter.wait_for_permission()
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                self.clear_retry_count(effective_context)
                return result
            except Exception as e:
                if self.rate_limiter is not None and recorded is not None:
                    # A failed attempt does not consume quota
                    self.rate_limiter.release_slot(recorded)
                classified = classify_error(e, effective_context)
                if not classified.retryable:
                    logger.error(
                        f"Non-retryable {classified.error_type.value} error in {effective_context} "
                        f"on attempt {attempts}: {e}"
                    )
                    raise

                last_exception = e
                retries_used = self.get_retry_count(effective_context)
                if retries_used >= self.max_retries:
                    logger.error(
                        f"Max retries ({self.max_retries}) reached for {effective_context}. Last error: {e}"
                    )
                    break

                delay = self.compute_backoff(retries_used)
                self._retry_attempts[effective_context] = retries_used + 1
                logger.warning(
                    f"Retryable {classified.error_type.value} error in {effective_context} on attempt "
                    f"{attempts}: {type(e).__name__}. Waiting {delay:.2f}s..."
                )
                dispatch_event(RetryScheduled(
                    context=effective_context,
                    attempt_number=attempts,
                    delay_seconds=delay,
                    error_type=classified.error_type.value,
                ))
                await self._sleep(delay)

        # --- Retries exhausted ---
        if use_cache_fallback and self.cache_service is not None and cache_key:
            logger.info(f"Attempting fallback from cache for key: {cache_key}")
            cached_value = self.cache_service.get(cache_key)
            if cached_value is not None:
                logger.info(f"Cache fallback successful for key: {cache_key}")
                return cached_value
            logger.info(f"Cache fallback failed for key: {cache_key} (not found or expired)")

        raise MaxRetryError(last_exception, attempts)
