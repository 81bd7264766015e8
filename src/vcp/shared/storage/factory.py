"""Storage factory for creating cache backends from environment variables.

Environment Variables:
    VCP_CACHE_STORAGE: "memory" (default), "file" or "redis"
    VCP_CACHE_PATH: JSON file for the file backend (default: ".cache/span_cache.json")
    VCP_CACHE_URL: Redis URL (default: "redis://localhost:6379")
"""

from __future__ import annotations

import logging
import os

from vcp.shared.storage.file import JsonFileStorage
from vcp.shared.storage.memory import MemoryStorage
from vcp.shared.storage.protocol import StorageBackend

logger = logging.getLogger(__name__)


def create_storage(
    kind: str | None = None,
    *,
    path: str | os.PathLike | None = None,
    url: str | None = None,
) -> StorageBackend:
    """Create a storage backend based on environment configuration.

    Args:
        kind: Override for VCP_CACHE_STORAGE.
        path: Override for VCP_CACHE_PATH.
        url: Override for VCP_CACHE_URL.

    Raises:
        ValueError: Unknown storage kind.
    """
    kind = (kind or os.environ.get("VCP_CACHE_STORAGE", "memory")).lower()

    if kind == "memory":
        logger.debug("[Storage] Using MemoryStorage")
        return MemoryStorage()

    if kind == "file":
        path = path or os.environ.get("VCP_CACHE_PATH", ".cache/span_cache.json")
        logger.info(f"[Storage] Using JsonFileStorage at {path}")
        return JsonFileStorage(path)

    if kind == "redis":
        url = url or os.environ.get("VCP_CACHE_URL", "redis://localhost:6379")
        logger.info(f"[Storage] Using RedisStorage at {url}")
        from vcp.shared.storage.redis_storage import RedisStorage
        return RedisStorage(url)

    raise ValueError(f"Unknown storage kind: {kind!r} (expected memory, file or redis)")
