"""Value objects for the API Resilience context (rate limiting)."""

from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_SECONDS = 60

@dataclass(frozen=True)
class RateLimiterOptions:
    """Configuration of a sliding window rate limiter.

    Args:
        max_requests: Maximum number of admitted actions within the window.
        window_seconds: Length of the trailing window in seconds.
        on_limit_reached: Optional callback invoked on every denial.
        name: Label used in log messages.
    """
    max_requests: int = DEFAULT_MAX_REQUESTS
    window_seconds: float = DEFAULT_WINDOW_SECONDS
    on_limit_reached: Optional[Callable[[], None]] = None
    name: str = "default"

    def __post_init__(self) -> None:
        if self.max_requests <= 0 or self.window_seconds <= 0:
            raise ValueError("Max requests and window must be positive.")
