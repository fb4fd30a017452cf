"""Cache domain models: the stored entry and the store configuration."""

from dataclasses import dataclass, field
from typing import Any, FrozenSet

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 5 * 60  # 5 minutes
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60

@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry and access bookkeeping."""
    data: Any
    timestamp: float  # Creation time
    expiry: float     # Absolute time at which the entry becomes stale
    tags: FrozenSet[str] = field(default_factory=frozenset)
    access_count: int = 0
    last_accessed: float = 0.0
    compressed: bool = False  # data holds zlib-compressed pickle bytes

    def is_expired(self, now: float) -> bool:
        # Inclusive bound: a zero TTL is stale on the very next read
        return now >= self.expiry

@dataclass(frozen=True)
class CacheConfig:
    """Immutable configuration of a single cache store."""
    max_size: int = DEFAULT_MAX_SIZE
    default_ttl: float = DEFAULT_TTL_SECONDS
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    compression: bool = False

    def __post_init__(self) -> None:
        if self.max_size <= 0:
            raise ValueError("max_size must be positive.")
        if self.default_ttl < 0:
            raise ValueError("default_ttl must not be negative.")
        if self.cleanup_interval <= 0:
            raise ValueError("cleanup_interval must be positive.")

# Named presets. These are configuration values only; each application
# context builds its own store from them.
CACHE_PRESETS = {
    "default": CacheConfig(max_size=1000, default_ttl=300, cleanup_interval=60),
    "api": CacheConfig(max_size=500, default_ttl=180, cleanup_interval=30),
    "image": CacheConfig(max_size=200, default_ttl=600, cleanup_interval=120),
}
