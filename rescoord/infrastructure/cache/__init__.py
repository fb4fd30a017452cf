"""Caching Service Implementation.

Provides the bounded in-memory CacheStore with TTL, tags and LRU eviction,
its write-through persistent variant and the function wrapping adapter.
Bounded Context: Cache Management
"""
