"""Concrete implementation of the bounded in-memory Cache Store.

Entries carry an absolute expiry, a set of tags and access bookkeeping.
Expired entries are removed lazily on read and by a periodic background
sweep; a full store evicts its least recently used entry before inserting
a new key. ``preload`` implements cache-aside loading with in-flight
de-duplication.
"""

import asyncio
import logging
import pickle
import sys
import time
import zlib
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

# Domain Layer Imports
from rescoord.domain.events.coordination_events import (
    CacheEntryEvicted, CacheSweepCompleted, dispatch_event
)
from rescoord.domain.interfaces.cache import CacheService
from rescoord.domain.models.cache import CacheConfig, CacheEntry
from rescoord.domain.models.common import CacheKey, CacheStats, CacheTag

logger = logging.getLogger(__name__)

# Marks "nothing cached" so that a cached None is still a hit
_MISSING = object()

# Reasons passed to the removal hook
REMOVED_DELETED = "deleted"
REMOVED_EXPIRED = "expired"
REMOVED_EVICTED = "evicted"
REMOVED_TAGGED = "tagged"
REMOVED_CORRUPT = "corrupt"

_DECODE_ERRORS = (zlib.error, pickle.UnpicklingError, EOFError, AttributeError, ImportError, TypeError)

def format_size(size: int) -> str:
    """Renders a byte count as B, KB or MB."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"

class CacheStore(CacheService):
    """Bounded key/value store with TTL, tags, LRU eviction and statistics.

    Eviction removes the entry with the smallest ``last_accessed``. Ties go
    to the entry inserted least recently (overwriting a key re-inserts it).
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        name: str = "cache",
        clock: Callable[[], float] = time.time,
        auto_cleanup: bool = True,
    ):
        """Initializes the cache store.

        Args:
            config: Store configuration (defaults to ``CacheConfig()``).
            name: Label used in log messages.
            clock: Returns the current time in seconds.
            auto_cleanup: Whether to run the periodic expiry sweep. The sweep
                needs a running event loop; it starts here when one is
                running, otherwise on the first write made inside one.
        """
        self.config = config or CacheConfig()
        self.name = name
        self._clock = clock
        self._auto_cleanup = auto_cleanup
        # Insertion ordered; the order doubles as the LRU tie-break
        self._entries: Dict[str, CacheEntry] = {}
        self._hit_count = 0
        self._miss_count = 0
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}
        self._cleanup_task: Optional["asyncio.Task[None]"] = None

        logger.info(
            f"CacheStore '{name}' initialized: max_size={self.config.max_size}, "
            f"ttl={self.config.default_ttl}s, cleanup={self.config.cleanup_interval}s, "
            f"compression={self.config.compression}"
        )
        self._ensure_cleanup_task()

    def __len__(self) -> int:
        return len(self._entries)

    # --- Internal Helpers ---

    def _encode(self, data: Any) -> Tuple[Any, bool]:
        if not self.config.compression:
            return data, False
        try:
            return zlib.compress(pickle.dumps(data)), True
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            logger.warning(f"Cache '{self.name}': value not compressible ({e}); storing as is.")
            return data, False

    def _decode(self, entry: CacheEntry) -> Any:
        if not entry.compressed:
            return entry.data
        return pickle.loads(zlib.decompress(entry.data))

    def _remove(self, key: str, reason: str) -> None:
        """Drops ``key`` from memory. Subclasses extend this to mirror removals."""
        self._entries.pop(key, None)

    def _restore(self, key: str, now: float, promote: bool = True) -> Optional[CacheEntry]:
        """Hook for read-through stores; the in-memory store has nothing to restore."""
        return None

    def _insert(self, key: str, entry: CacheEntry) -> None:
        if key in self._entries:
            # An overwrite moves the key to the end of the insertion order
            del self._entries[key]
        elif len(self._entries) >= self.config.max_size:
            self._evict_lru()
        self._entries[key] = entry

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        # min() keeps the first of equal candidates, i.e. the oldest insertion
        lru_key = min(self._entries, key=lambda k: self._entries[k].last_accessed)
        last_accessed = self._entries[lru_key].last_accessed
        self._remove(lru_key, REMOVED_EVICTED)
        logger.debug(f"Cache '{self.name}' EVICTED key (LRU): {lru_key}")
        dispatch_event(CacheEntryEvicted(key=lru_key, last_accessed=last_accessed))

    def _lookup(self, key: str, record_stats: bool = True) -> Any:
        """Returns the live value for ``key`` or ``_MISSING``."""
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            # Lookups with record_stats=False must not reorder or evict entries
            entry = self._restore(key, now, promote=record_stats)
        if entry is None:
            if record_stats:
                self._miss_count += 1
            logger.debug(f"Cache '{self.name}' MISS for key: {key}")
            return _MISSING

        if entry.is_expired(now):
            self._remove(key, REMOVED_EXPIRED)
            if record_stats:
                self._miss_count += 1
            logger.debug(f"Cache '{self.name}' EXPIRED key: {key}")
            return _MISSING

        try:
            data = self._decode(entry)
        except _DECODE_ERRORS as e:
            logger.warning(f"Cache '{self.name}': corrupted entry for key {key} ({e}). Removing.")
            self._remove(key, REMOVED_CORRUPT)
            if record_stats:
                self._miss_count += 1
            return _MISSING

        if record_stats:
            entry.access_count += 1
            entry.last_accessed = now
            self._hit_count += 1
            logger.debug(f"Cache '{self.name}' HIT for key: {key}")
        return data

    # --- Background Sweep ---

    def _ensure_cleanup_task(self) -> None:
        if not self._auto_cleanup:
            return
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"Cache '{self.name}': no running event loop, cleanup sweep deferred.")
            return
        self._cleanup_task = loop.create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            self.cleanup()

    def cleanup(self) -> int:
        """Removes every expired entry now.

        Returns:
            The number of removed entries.
        """
        now = self._clock()
        expired_keys = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired_keys:
            self._remove(key, REMOVED_EXPIRED)
        if expired_keys:
            logger.debug(f"Cache '{self.name}' cleanup: removed {len(expired_keys)} expired entries")
        dispatch_event(CacheSweepCompleted(removed=len(expired_keys), remaining=len(self._entries)))
        return len(expired_keys)

    # --- CacheService Interface Implementation ---

    def set(
        self,
        key: CacheKey,
        data: Any,
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> None:
        now = self._clock()
        effective_ttl = ttl if ttl is not None else self.config.default_ttl
        stored, compressed = self._encode(data)
        entry = CacheEntry(
            data=stored,
            timestamp=now,
            expiry=now + effective_ttl,
            tags=frozenset(tags or ()),
            access_count=0,
            last_accessed=now,
            compressed=compressed,
        )
        self._insert(key, entry)
        logger.debug(f"Cache '{self.name}' PUT key: {key} TTL: {effective_ttl}s")
        self._ensure_cleanup_task()

    def get(self, key: CacheKey) -> Optional[Any]:
        value = self._lookup(key)
        return None if value is _MISSING else value

    def has(self, key: CacheKey) -> bool:
        return self._lookup(key, record_stats=False) is not _MISSING

    def delete(self, key: CacheKey) -> bool:
        if key not in self._entries:
            return False
        self._remove(key, REMOVED_DELETED)
        logger.debug(f"Cache '{self.name}' DELETE key: {key}")
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._hit_count = 0
        self._miss_count = 0
        logger.info(f"Cleared cache '{self.name}'.")

    def clear_by_tags(self, tags: Iterable[CacheTag]) -> int:
        tag_set = frozenset(tags)
        # Snapshot the keys; entries are removed while iterating
        matching = [k for k, entry in list(self._entries.items()) if entry.tags & tag_set]
        for key in matching:
            self._remove(key, REMOVED_TAGGED)
        logger.debug(f"Cache '{self.name}' cleared {len(matching)} entries by tags {sorted(tag_set)}")
        return len(matching)

    def refresh(self, key: CacheKey, ttl: Optional[float] = None) -> bool:
        """Resets the expiry of an existing entry without touching its data.

        Returns:
            Whether an entry was found.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.expiry = self._clock() + (ttl if ttl is not None else self.config.default_ttl)
        return True

    def keys(self, tag: Optional[CacheTag] = None) -> List[str]:
        # Expired entries stay listed until a read or a sweep removes them
        return [k for k, entry in self._entries.items() if tag is None or tag in entry.tags]

    def get_stats(self) -> CacheStats:
        total_requests = self._hit_count + self._miss_count
        return CacheStats(
            size=len(self._entries),
            max_size=self.config.max_size,
            hit_count=self._hit_count,
            miss_count=self._miss_count,
            hit_rate=(self._hit_count / total_requests) * 100 if total_requests > 0 else 0,
            memory_estimate=self._estimate_memory_usage(),
        )

    def _estimate_memory_usage(self) -> str:
        size = 0
        for key, entry in self._entries.items():
            size += sys.getsizeof(key)
            size += sys.getsizeof(entry.data)
            size += sum(sys.getsizeof(tag) for tag in entry.tags)
        return format_size(size)

    # --- Cache-Aside Loading ---

    async def preload(
        self,
        key: CacheKey,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Any:
        """Returns the cached value for ``key``, loading it on a miss.

        Concurrent calls for the same key share one in-flight ``loader()``
        call. Loader errors reach every waiting caller and nothing is cached.

        Args:
            key: The cache key.
            loader: Zero-argument coroutine function producing the value.
            ttl: Optional TTL for the stored value.
            tags: Optional tags for the stored value.

        Returns:
            The cached or freshly loaded value.
        """
        cached = self._lookup(key)
        if cached is not _MISSING:
            return cached

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, loader, ttl, tags))
            self._inflight[key] = pending
            pending.add_done_callback(lambda fut, k=key: self._forget_inflight(k, fut))
        else:
            logger.debug(f"Cache '{self.name}': joining in-flight load for key: {key}")
        # Shielded so one cancelled caller does not cancel the shared load
        return await asyncio.shield(pending)

    def is_loading(self, key: CacheKey) -> bool:
        """Whether a ``preload`` for ``key`` is currently in flight."""
        pending = self._inflight.get(key)
        return pending is not None and not pending.done()

    async def _load(
        self,
        key: CacheKey,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[float],
        tags: Optional[Iterable[str]],
    ) -> Any:
        data = await loader()
        self.set(key, data, ttl=ttl, tags=tags)
        return data

    def _forget_inflight(self, key: str, fut: "asyncio.Future[Any]") -> None:
        if self._inflight.get(key) is fut:
            del self._inflight[key]
        if not fut.cancelled():
            # Marks a failure as retrieved even if every waiter went away
            fut.exception()

    # --- Bulk Operations ---

    def set_many(self, entries: Iterable[Dict[str, Any]]) -> None:
        """Stores several entries given as ``{'key', 'data', 'ttl'?, 'tags'?}`` dicts."""
        for item in entries:
            self.set(item["key"], item["data"], ttl=item.get("ttl"), tags=item.get("tags"))

    def get_many(self, keys: Iterable[CacheKey]) -> List[Tuple[str, Optional[Any]]]:
        return [(key, self.get(key)) for key in keys]

    def delete_many(self, keys: Iterable[CacheKey]) -> int:
        return sum(1 for key in keys if self.delete(key))

    # --- Lifecycle ---

    def destroy(self) -> None:
        """Cancels the background sweep and empties the store."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        self._auto_cleanup = False
        self.clear()
