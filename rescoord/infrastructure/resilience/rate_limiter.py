"""Implementation of a sliding window rate limiter.

Controls how many actions may start within a trailing time window. Denial
is reported through return values (``False`` / ``None``), never raised.
An action wrapped with ``execute_with_limit`` that fails gives its slot back.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Optional

from rescoord.domain.events.coordination_events import RateLimitReached, dispatch_event
from rescoord.domain.models.resilience import RateLimiterOptions

logger = logging.getLogger(__name__)

class SlidingWindowRateLimiter:
    """Sliding window rate limiter.

    ``timestamps`` holds one entry per admitted action in chronological
    order; entries at or before ``now - window_seconds`` no longer count.
    """

    def __init__(
        self,
        options: Optional[RateLimiterOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the rate limiter.

        Args:
            options: Limits and the optional ``on_limit_reached`` callback.
            clock: Returns the current time in seconds. ``get_reset_time``
                reports values of this clock.
        """
        self.options = options or RateLimiterOptions()
        self.max_requests = self.options.max_requests
        self.window_seconds = self.options.window_seconds
        self.timestamps: Deque[float] = deque()
        self._clock = clock
        self._limited_until: Optional[float] = None
        logger.info(
            f"RateLimiter '{self.options.name}' initialized: "
            f"{self.max_requests} requests / {self.window_seconds} seconds"
        )

    def _prune_timestamps(self, now: float) -> None:
        """Removes timestamps that slid out of the window."""
        window_start = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= window_start:
            self.timestamps.popleft()

    def _admit(self, notify: bool) -> bool:
        now = self._clock()
        self._prune_timestamps(now)
        if len(self.timestamps) >= self.max_requests:
            # Limited until the oldest counted action leaves the window
            self._limited_until = self.timestamps[0] + self.window_seconds
            if notify:
                retry_after = self._limited_until - now
                logger.debug(
                    f"RateLimiter '{self.options.name}': limit reached, retry in {retry_after:.2f}s"
                )
                dispatch_event(RateLimitReached(
                    limiter=self.options.name,
                    max_requests=self.max_requests,
                    retry_after_seconds=retry_after,
                ))
                if self.options.on_limit_reached is not None:
                    self.options.on_limit_reached()
            return False

        self.timestamps.append(now)
        return True

    def release_slot(self, timestamp: float) -> None:
        """Gives back the slot recorded at ``timestamp`` (no-op once it left the window)."""
        try:
            self.timestamps.remove(timestamp)
        except ValueError:
            # Already slid out of the window
            return
        if len(self.timestamps) < self.max_requests:
            self._limited_until = None

    @property
    def is_limited(self) -> bool:
        """True between a denial and the moment the oldest counted action expires."""
        return self._limited_until is not None and self._clock() < self._limited_until

    def check_limit(self) -> bool:
        """Admits (and records) one action if the window has room.

        Returns:
            True if admitted, False if denied.
        """
        return self._admit(notify=True)

    async def execute_with_limit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Any]:
        """Runs ``fn`` if admitted.

        Returns:
            None if denied (``fn`` is not called), otherwise the result of ``fn``.

        Raises:
            Whatever ``fn`` raises; the slot recorded for this call is released first.
        """
        if not self.check_limit():
            return None

        recorded = self.timestamps[-1]
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except BaseException:
            # Cancellation also gives the slot back
            self.release_slot(recorded)
            raise
        return result

    def get_remaining_requests(self) -> int:
        self._prune_timestamps(self._clock())
        return max(0, self.max_requests - len(self.timestamps))

    def get_reset_time(self) -> Optional[float]:
        """Returns the clock time at which a slot frees up, or None if under the limit."""
        self._prune_timestamps(self._clock())
        if len(self.timestamps) < self.max_requests:
            return None
        return self.timestamps[0] + self.window_seconds

    def get_wait_time(self) -> float:
        """Seconds until the next action can be admitted (0 if it can be now)."""
        reset_time = self.get_reset_time()
        if reset_time is None:
            return 0.0
        return max(0.0, reset_time - self._clock())

    async def wait_for_permission(self) -> float:
        """Waits until an action is admitted, recording it.

        Returns:
            The recorded timestamp, usable with ``release_slot``.
        """
        while not self._admit(notify=False):
            wait_time = self.get_wait_time()
            logger.debug(f"Rate limit reached. Waiting for {wait_time:.2f} seconds.")
            await asyncio.sleep(wait_time)
        return self.timestamps[-1]

    def reset(self) -> None:
        """Forgets every recorded action."""
        self.timestamps.clear()
        self._limited_until = None
