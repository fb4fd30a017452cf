"""Application services composed from cache, batcher and rate limiter."""
