"""Core service combining cache, rate limiter and request batcher.

A fetch is served from the cache when possible. Otherwise it asks the rate
limiter for a slot, joins the current batch for the upstream call and
stores the result. Concurrent fetches of one key share a single load and
a single rate limiter slot.
"""

import asyncio
import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

# Infrastructure Layer Imports (instances injected)
from rescoord.infrastructure.cache.cache_store import CacheStore
from rescoord.infrastructure.resilience.rate_limiter import SlidingWindowRateLimiter
from rescoord.infrastructure.resilience.request_batcher import BatchFunction, RequestBatcher

logger = logging.getLogger(__name__)


class FetchService:
    """Orchestrates cached, rate limited and batched upstream fetches."""

    def __init__(
        self,
        cache: CacheStore,
        batcher: RequestBatcher,
        rate_limiter: SlidingWindowRateLimiter,
        upstream_fn: BatchFunction,
        batch_key: str = "upstream",
        delay_seconds: Optional[float] = None,
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ):
        """Initializes the FetchService with its dependencies.

        Args:
            cache: Store for fetched values.
            batcher: Coalesces upstream calls.
            rate_limiter: Admission control for upstream work.
            upstream_fn: Batch function receiving a list of params.
            batch_key: Batch key all fetches of this service share.
            delay_seconds: Debounce delay per batch call (batcher default if None).
            ttl: TTL of stored values (cache default if None).
            tags: Tags attached to stored values.
        """
        self.cache = cache
        self.batcher = batcher
        self.rate_limiter = rate_limiter
        self.upstream_fn = upstream_fn
        self.batch_key = batch_key
        self.delay_seconds = delay_seconds
        self.ttl = ttl
        self.tags = list(tags) if tags is not None else None

    async def _load(self, params: Any) -> Any:
        return await self.batcher.batch(self.batch_key, params, self.upstream_fn, self.delay_seconds)

    async def fetch(self, key: str, params: Any) -> Optional[Any]:
        """Returns the value for ``key``, fetching it upstream with ``params`` on a miss.

        Returns:
            The value, or None when the rate limiter denied the upstream call.
        """
        if self.cache.has(key) or self.cache.is_loading(key):
            # Cached or already being loaded: no new upstream work needed
            return await self.cache.preload(key, lambda: self._load(params), ttl=self.ttl, tags=self.tags)

        result = await self.rate_limiter.execute_with_limit(
            self.cache.preload, key, lambda: self._load(params), ttl=self.ttl, tags=self.tags
        )
        if result is None and not self.cache.has(key):
            logger.info(f"Fetch for key {key} denied by rate limiter.")
        return result

    async def fetch_many(self, requests: Sequence[Tuple[str, Any]]) -> List[Any]:
        """Fetches several ``(key, params)`` pairs concurrently.

        Failures are returned in place of results, in request order.
        """
        return await asyncio.gather(
            *(self.fetch(key, params) for key, params in requests), return_exceptions=True
        )

    def invalidate(self, tags: Iterable[str]) -> int:
        """Drops every cached value carrying one of ``tags``."""
        removed = self.cache.clear_by_tags(tags)
        logger.info(f"Invalidated {removed} cached values.")
        return removed
