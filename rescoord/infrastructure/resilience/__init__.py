"""API Resilience Implementations.

Contains services for handling rate limits, retries with exponential
backoff, and request batching.
Bounded Context: API Resilience
"""
