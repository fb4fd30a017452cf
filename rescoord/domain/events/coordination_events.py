"""Domain Events emitted by the coordination components.

Examples include events for evictions, cache sweeps, batch flushes, rate
limit denials and scheduled retries.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Cache Events ---

@dataclass
class CacheEntryEvicted(DomainEvent):
    """Event triggered when a full cache evicts its least recently used entry."""
    key: str
    last_accessed: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class CacheSweepCompleted(DomainEvent):
    """Event triggered after a cleanup sweep removed expired entries."""
    removed: int
    remaining: int
    timestamp: float = field(default_factory=time.time)

# --- Batching Events ---

@dataclass
class BatchFlushed(DomainEvent):
    """Event triggered when a batch flush resolved all of its callers."""
    key: str
    size: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class BatchFailed(DomainEvent):
    """Event triggered when a batch flush rejected all of its callers."""
    key: str
    size: int
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)

# --- Resilience Events ---

@dataclass
class RateLimitReached(DomainEvent):
    """Event triggered when the rate limiter denies an action."""
    limiter: str
    max_requests: int
    retry_after_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed action."""
    context: str
    attempt_number: int
    delay_seconds: float
    error_type: str
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

def dispatch_event(event: DomainEvent) -> None:
    """Publishes a domain event.

    Events are currently only written to the debug log.
    """
    logger.debug(f"EVENT: {event}")
