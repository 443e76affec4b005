"""
Caching support for expensive upstream lookups.
"""

from .cache_manager import MemoizationCache, CacheKey

__all__ = [
    'MemoizationCache',
    'CacheKey',
]
