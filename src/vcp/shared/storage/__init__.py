"""Durable storage backends for the result cache.

Usage:
    from vcp.shared.storage import create_storage

    storage = create_storage()  # MemoryStorage, JsonFileStorage or RedisStorage
    storage.set_item("span-cache", "{...}")
"""

from vcp.shared.storage.factory import create_storage
from vcp.shared.storage.file import JsonFileStorage
from vcp.shared.storage.memory import MemoryStorage
from vcp.shared.storage.protocol import StorageBackend
from vcp.shared.storage.redis_storage import RedisStorage

__all__ = [
    # Factory
    "create_storage",
    # Protocol & implementations
    "StorageBackend",
    "MemoryStorage",
    "JsonFileStorage",
    "RedisStorage",
]
