"""Defines common Value Objects used across the coordination contexts.

These objects represent simple values like cache keys, tags and batch keys,
plus the structured dictionaries returned by the components.
"""

from typing import NewType, TypedDict

# === Caching Context ===
CacheKey = NewType("CacheKey", str)              # Unique key for a cache entry
CacheTag = NewType("CacheTag", str)              # Label for bulk invalidation (e.g., 'news')

# === Batching Context ===
BatchKey = NewType("BatchKey", str)              # Groups calls that may be coalesced

# --- Structured Data ---
class CacheStats(TypedDict):
    """Snapshot of cache occupancy and hit/miss accounting."""
    size: int
    max_size: int
    hit_count: int
    miss_count: int
    hit_rate: float  # Percentage, 0 when no lookups happened yet
    memory_estimate: str

class BackoffPolicy(TypedDict):
    """Value Object representing retry backoff configuration."""
    max_retries: int
    initial_delay: float
    factor: float
    max_delay: float
