"""Request batching (call coalescing) service.

Calls made under the same batch key within a short window are collected and
sent downstream as one call. The flush fires ``delay_seconds`` after the
*last* call for a key (debounce); an optional ``max_wait_seconds`` ceiling
bounds how long the first queued caller can be held back.

Results are fanned back out by position. A failing batch function fails
every caller of that flush with the same exception.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from rescoord.domain.events.coordination_events import BatchFailed, BatchFlushed, dispatch_event
from rescoord.domain.models.common import BatchKey
from rescoord.domain.models.errors import BatchSizeMismatchError

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 0.05

BatchFunction = Callable[[List[Any]], Any]  # list of params -> (awaitable) list of results

@dataclass
class _PendingCall:
    future: "asyncio.Future[Any]"
    params: Any

@dataclass
class _BatchQueue:
    first_enqueued: float
    batch_fn: Optional[BatchFunction] = None
    timer: Optional[asyncio.TimerHandle] = None
    calls: List[_PendingCall] = field(default_factory=list)

class RequestBatcher:
    """Coalesces calls per batch key into single downstream calls."""

    def __init__(
        self,
        default_delay: float = DEFAULT_DELAY_SECONDS,
        max_wait_seconds: Optional[float] = None,
    ):
        """Initializes the batcher.

        Args:
            default_delay: Debounce delay used when ``batch`` gets no delay.
            max_wait_seconds: Optional ceiling on the time between the first
                queued call of a key and its flush. None keeps pure debounce.
        """
        self.default_delay = default_delay
        self.max_wait_seconds = max_wait_seconds
        self._queues: Dict[str, _BatchQueue] = {}
        self._flush_tasks: Set["asyncio.Task[None]"] = set()
        logger.info(
            f"RequestBatcher initialized: delay={default_delay}s, "
            f"max_wait={max_wait_seconds if max_wait_seconds is not None else 'unbounded'}"
        )

    def batch(
        self,
        key: BatchKey,
        params: Any,
        batch_fn: BatchFunction,
        delay_seconds: Optional[float] = None,
    ) -> "asyncio.Future[Any]":
        """Queues one call and returns a future for its result.

        Must be called while an event loop is running. The call is queued
        immediately, so result positions follow the order of ``batch`` calls.
        When several calls of one flush pass different functions, the one
        passed last is used.

        Args:
            key: Batch key; only calls with equal keys are coalesced.
            params: This caller's parameters.
            batch_fn: Receives the list of all queued params, returns the
                list of results in the same order (may be a coroutine function).
            delay_seconds: Debounce delay; restarts the key's timer.

        Returns:
            A future resolved with this caller's result.
        """
        loop = asyncio.get_running_loop()
        now = loop.time()
        future: "asyncio.Future[Any]" = loop.create_future()

        queue = self._queues.get(key)
        if queue is None:
            queue = _BatchQueue(first_enqueued=now)
            self._queues[key] = queue
        elif queue.timer is not None:
            queue.timer.cancel()

        queue.calls.append(_PendingCall(future=future, params=params))
        queue.batch_fn = batch_fn

        delay = self.default_delay if delay_seconds is None else delay_seconds
        if self.max_wait_seconds is not None:
            delay = min(delay, max(0.0, queue.first_enqueued + self.max_wait_seconds - now))
        queue.timer = loop.call_later(delay, self._fire, key)
        logger.debug(f"Batch '{key}': queued call #{len(queue.calls)}, flush in {delay:.3f}s")
        return future

    def _fire(self, key: str) -> None:
        # Taking the queue here empties it and consumes its timer in one step
        queue = self._queues.pop(key, None)
        if queue is None or not queue.calls:
            return
        task = asyncio.ensure_future(self._flush(key, queue))
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _flush(self, key: str, queue: _BatchQueue) -> None:
        calls = queue.calls
        params = [call.params for call in calls]
        start_time = time.perf_counter()
        try:
            results = queue.batch_fn(params)
            if inspect.isawaitable(results):
                results = await results
            results = list(results)
            if len(results) != len(calls):
                raise BatchSizeMismatchError(key, expected=len(calls), received=len(results))
        except asyncio.CancelledError:
            for call in calls:
                call.future.cancel()
            raise
        except Exception as e:
            logger.warning(f"Batch '{key}' failed for {len(calls)} calls: {type(e).__name__}: {e}")
            dispatch_event(BatchFailed(key=key, size=len(calls), error_type=type(e).__name__, error_message=str(e)))
            for call in calls:
                if not call.future.done():
                    call.future.set_exception(e)
            return

        for call, result in zip(calls, results):
            # A caller may have cancelled its own future meanwhile
            if not call.future.done():
                call.future.set_result(result)
        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Batch '{key}' flushed {len(calls)} calls in {latency_ms:.1f}ms")
        dispatch_event(BatchFlushed(key=key, size=len(calls), latency_ms=latency_ms))

    def pending_count(self, key: BatchKey) -> int:
        """Number of calls currently queued under ``key``."""
        queue = self._queues.get(key)
        return len(queue.calls) if queue is not None else 0

    def pending_keys(self) -> List[str]:
        return list(self._queues)

    def clear(self) -> None:
        """Cancels every pending flush and drops the queued calls.

        Teardown only: the futures of dropped calls are never settled, so
        anyone still awaiting them waits forever.
        """
        for queue in self._queues.values():
            if queue.timer is not None:
                queue.timer.cancel()
        dropped = sum(len(queue.calls) for queue in self._queues.values())
        self._queues.clear()
        if dropped:
            logger.warning(f"RequestBatcher cleared with {dropped} unsettled calls.")
