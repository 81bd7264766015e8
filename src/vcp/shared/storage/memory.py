"""In-process storage backend.

Default when VCP_CACHE_STORAGE=memory: nothing survives the process, which
is what tests and one-shot CLI runs want.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Dict-backed StorageBackend."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            logger.debug("[MemoryStorage] Removed '%s'", key)

    def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)
