"""Function wrapping adapter on top of a cache.

``with_cache`` takes a function and a cache and returns a new function that
serves results from the cache. Coroutine functions go through
``CacheService.preload`` and so share in-flight loads.
"""

import functools
import hashlib
import inspect
import logging
from typing import Any, Callable, Iterable, Optional

from rescoord.domain.interfaces.cache import CacheService

logger = logging.getLogger(__name__)

def build_cache_key(prefix: str, *args: Any, **kwargs: Any) -> str:
    """Generates a consistent cache key from a prefix and call arguments."""
    key_parts = [prefix]
    key_parts.extend(map(str, args))
    # Ensure consistent order for kwargs
    key_parts.extend(f"{k}={v}" for k, v in sorted(kwargs.items()))
    key_string = "|".join(key_parts)
    return hashlib.sha256(key_string.encode("utf-8")).hexdigest()

def with_cache(
    fn: Callable[..., Any],
    cache: CacheService,
    key_builder: Optional[Callable[..., str]] = None,
    ttl: Optional[float] = None,
    tags: Optional[Iterable[str]] = None,
) -> Callable[..., Any]:
    """Wraps ``fn`` so its results are cached.

    Keys have the form ``fn:<qualified name>:<suffix>`` where the suffix comes
    from ``key_builder(*args, **kwargs)`` or a hash of the arguments.

    Args:
        fn: The function (sync or coroutine function) to wrap.
        cache: The cache to read from and populate.
        key_builder: Optional function mapping call arguments to a key suffix.
        ttl: Optional TTL for stored results.
        tags: Optional tags for stored results.

    Returns:
        The wrapping function.
    """
    name = getattr(fn, "__qualname__", getattr(fn, "__name__", "anonymous"))
    tag_list = list(tags) if tags is not None else None

    def make_key(*args: Any, **kwargs: Any) -> str:
        suffix = key_builder(*args, **kwargs) if key_builder else build_cache_key(name, *args, **kwargs)
        return f"fn:{name}:{suffix}"

    if inspect.iscoroutinefunction(fn):
        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            key = make_key(*args, **kwargs)
            return await cache.preload(key, lambda: fn(*args, **kwargs), ttl=ttl, tags=tag_list)
        return async_wrapper

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        key = make_key(*args, **kwargs)
        if cache.has(key):
            return cache.get(key)
        result = fn(*args, **kwargs)
        cache.set(key, result, ttl=ttl, tags=tag_list)
        return result
    return wrapper
