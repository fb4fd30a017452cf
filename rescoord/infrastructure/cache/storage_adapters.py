"""Storage adapters for the persistent cache.

``MemoryStorageAdapter`` keeps records in a dictionary (useful for tests and
for sharing records between stores in one process). ``DiskCacheStorageAdapter``
stores them in a ``diskcache`` directory so they survive restarts.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import diskcache as dc

from rescoord.domain.interfaces.cache import StorageAdapter

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "cache:"
DEFAULT_STORAGE_DIR = Path.home() / ".rescoord" / "storage"

class MemoryStorageAdapter(StorageAdapter):
    """Dictionary-backed storage with key prefixing."""

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix
        self._records: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._records.get(self.prefix + key)

    def set(self, key: str, value: Any) -> None:
        self._records[self.prefix + key] = value

    def delete(self, key: str) -> None:
        self._records.pop(self.prefix + key, None)

    def keys(self) -> List[str]:
        return [k[len(self.prefix):] for k in self._records if k.startswith(self.prefix)]

    def clear(self) -> None:
        # Only this adapter's prefix; other prefixes may share the dict
        for stored_key in [k for k in self._records if k.startswith(self.prefix)]:
            del self._records[stored_key]

class DiskCacheStorageAdapter(StorageAdapter):
    """Stores records in a ``diskcache.Cache`` directory."""

    def __init__(
        self,
        directory: Union[str, Path] = DEFAULT_STORAGE_DIR,
        prefix: str = DEFAULT_PREFIX,
        disk_cache: Optional[dc.Cache] = None,
    ):
        """Initializes the adapter.

        Args:
            directory: Directory of the disk cache (ignored if ``disk_cache`` is given).
            prefix: Prefix applied to every key; ``clear`` only removes prefixed keys.
            disk_cache: An already opened ``diskcache.Cache`` to reuse.
        """
        self.prefix = prefix
        self.disk_cache = disk_cache if disk_cache is not None else dc.Cache(str(directory), timeout=1)
        logger.info(f"Initialized disk storage at: {self.disk_cache.directory} (prefix='{prefix}')")

    def get(self, key: str) -> Optional[Any]:
        return self.disk_cache.get(self.prefix + key, default=None)

    def set(self, key: str, value: Any) -> None:
        self.disk_cache.set(self.prefix + key, value)

    def delete(self, key: str) -> None:
        self.disk_cache.delete(self.prefix + key)

    def keys(self) -> List[str]:
        return [
            k[len(self.prefix):] for k in self.disk_cache.iterkeys()
            if isinstance(k, str) and k.startswith(self.prefix)
        ]

    def clear(self) -> None:
        if not self.prefix:
            count = self.disk_cache.clear()
            logger.info(f"Cleared disk storage. Removed {count} items.")
            return
        stale = self.keys()
        for key in stale:
            self.delete(key)
        logger.info(f"Cleared disk storage prefix '{self.prefix}'. Removed {len(stale)} items.")

    def close(self) -> None:
        self.disk_cache.close()
