"""
Cache abstraction layer.

Provides a unified interface for bounded caches, backed by cachetools.
"""
from typing import Any, Callable, TypeVar

from cachetools import LRUCache

T = TypeVar('T')


def create_lru_cache(maxsize: int = 100) -> LRUCache:
    """
    Create an LRU cache (evicts least recently used).

    Args:
        maxsize: Maximum number of items in cache

    Returns:
        LRUCache instance
    """
    return LRUCache(maxsize=maxsize)


def cached_call(cache: Any, key: Any, loader: Callable[[], T]) -> T:
    """
    Get value from cache or load it.

    Unlike a plain memo, loader errors propagate and nothing is cached.

    Example:
        cache = create_lru_cache()
        compiled = cached_call(cache, (pattern, flags), lambda: re.compile(pattern, flags))
    """
    try:
        return cache[key]
    except KeyError:
        value = loader()
        cache[key] = value
        return value
