"""rescoord: client-side resource coordination.

A bounded cache with expiration and tag invalidation, a call-batching
coalescer and a sliding window rate limiter.
"""

__version__ = "0.1.0"
