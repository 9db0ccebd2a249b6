"""
app/cache package marker.
"""

from app.cache.bounded_cache import (
    BoundedCache,
    CacheStats,
    get_metadata_cache,
    get_query_cache,
)

__all__ = [
    "BoundedCache",
    "CacheStats",
    "get_metadata_cache",
    "get_query_cache",
]
