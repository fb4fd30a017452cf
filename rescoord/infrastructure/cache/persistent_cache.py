"""Write-through persistent variant of the Cache Store.

Keeps the in-memory contract of :class:`CacheStore` and mirrors writes,
deletes and invalidations to a :class:`StorageAdapter`. An in-memory miss
reads through the storage and restores unexpired records, so entries that
were evicted from memory (or written by a previous process) stay reachable.
Storage failures are logged and never raised.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from rescoord.domain.interfaces.cache import StorageAdapter
from rescoord.domain.models.cache import CacheConfig, CacheEntry
from rescoord.domain.models.common import CacheKey, CacheTag
from rescoord.infrastructure.cache.cache_store import CacheStore, REMOVED_EVICTED

logger = logging.getLogger(__name__)

_RECORD_FIELDS = ("data", "timestamp", "expiry", "tags")

class PersistentCacheStore(CacheStore):
    """CacheStore that writes through to a storage adapter."""

    def __init__(
        self,
        storage: StorageAdapter,
        config: Optional[CacheConfig] = None,
        name: str = "persistent-cache",
        clock: Callable[[], float] = time.time,
        auto_cleanup: bool = True,
    ):
        self.storage = storage
        super().__init__(config=config, name=name, clock=clock, auto_cleanup=auto_cleanup)

    # --- Storage Helpers ---

    def _save(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        try:
            record = {
                "data": self._decode(entry),
                "timestamp": entry.timestamp,
                "expiry": entry.expiry,
                "tags": sorted(entry.tags),
            }
            self.storage.set(key, record)
        except Exception as e:
            logger.warning(f"Failed to save key {key} to storage: {e}")

    def _storage_delete(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except Exception as e:
            logger.warning(f"Failed to delete key {key} from storage: {e}")

    def _stored_keys(self) -> List[str]:
        try:
            return self.storage.keys()
        except Exception as e:
            logger.warning(f"Failed to list keys of storage for cache '{self.name}': {e}")
            return []

    def _remove(self, key: str, reason: str) -> None:
        super()._remove(key, reason)
        # Evicted entries stay in storage so they can be restored later
        if reason != REMOVED_EVICTED:
            self._storage_delete(key)

    def _restore(self, key: str, now: float, promote: bool = True) -> Optional[CacheEntry]:
        try:
            record = self.storage.get(key)
        except Exception as e:
            logger.warning(f"Failed to read key {key} from storage: {e}")
            return None
        if record is None:
            return None
        if not isinstance(record, dict) or any(f not in record for f in _RECORD_FIELDS):
            logger.warning(f"Discarding malformed storage record for key: {key}")
            self._storage_delete(key)
            return None

        stored, compressed = self._encode(record["data"])
        entry = CacheEntry(
            data=stored,
            timestamp=record["timestamp"],
            expiry=record["expiry"],
            tags=frozenset(record["tags"]),
            access_count=0,
            last_accessed=now,
            compressed=compressed,
        )
        if promote and not entry.is_expired(now):
            self._insert(key, entry)
            logger.debug(f"Cache '{self.name}' restored key from storage: {key}")
        return entry

    # --- Overrides ---

    def set(
        self,
        key: CacheKey,
        data: Any,
        ttl: Optional[float] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> None:
        super().set(key, data, ttl=ttl, tags=tags)
        self._save(key)

    def delete(self, key: CacheKey) -> bool:
        stored = self.stored_record(key) is not None
        removed = super().delete(key)
        if not removed:
            # Evicted or written by an earlier store: only the record exists
            self._storage_delete(key)
        return removed or stored

    def clear_by_tags(self, tags: Iterable[CacheTag]) -> int:
        """Removes tagged entries from memory and tagged records from storage.

        Records that are not in memory (evicted, or written by an earlier
        store) are matched by the tags saved with them.
        """
        tag_set = frozenset(tags)
        removed = super().clear_by_tags(tag_set)
        for key in self._stored_keys():
            record = self.stored_record(key)
            if isinstance(record, dict) and tag_set.intersection(record.get("tags") or ()):
                self._storage_delete(key)
                removed += 1
        return removed

    def refresh(self, key: CacheKey, ttl: Optional[float] = None) -> bool:
        refreshed = super().refresh(key, ttl)
        if refreshed:
            self._save(key)
        return refreshed

    def clear(self) -> None:
        super().clear()
        try:
            self.storage.clear()
        except Exception as e:
            logger.error(f"Failed to clear storage for cache '{self.name}': {e}", exc_info=True)

    def destroy(self) -> None:
        """Stops the sweep and empties memory; stored records are kept."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        self._auto_cleanup = False
        CacheStore.clear(self)

    def stored_record(self, key: CacheKey) -> Optional[Dict[str, Any]]:
        """Returns the raw storage record for ``key`` (None if absent or unreadable)."""
        try:
            return self.storage.get(key)
        except Exception as e:
            logger.warning(f"Failed to read key {key} from storage: {e}")
            return None
