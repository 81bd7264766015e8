"""Versioned result cache for the extraction pipeline.

Usage:
    from vcp.cache import ResultCache, build_cache_key
    from vcp.shared.storage import create_storage

    cache = ResultCache(create_storage(), version=live_version("v3"))
    cache.hydrate()
"""

from vcp.cache.keys import build_cache_key, live_version, text_signature
from vcp.cache.service import CacheEntry, CacheStats, ResultCache

__all__ = [
    "ResultCache",
    "CacheEntry",
    "CacheStats",
    "build_cache_key",
    "live_version",
    "text_signature",
]
