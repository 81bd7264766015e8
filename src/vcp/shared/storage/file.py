"""JSON-file storage backend.

All keys live in one JSON object on disk. Writes go to a temp file and are
moved into place so a crash never leaves a half-written document. Reads of
an unparseable file raise ``CacheCorruptionError``; the next write replaces
it.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from vcp.errors import CacheCorruptionError

logger = logging.getLogger(__name__)


class JsonFileStorage:
    """StorageBackend persisted as a single JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as f:
            raw = f.read()
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CacheCorruptionError(f"{self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CacheCorruptionError(f"{self.path} does not contain a JSON object")
        return data

    def _read_for_update(self) -> tuple[dict[str, str], bool]:
        try:
            return self._read(), False
        except CacheCorruptionError as e:
            logger.warning("[JsonFileStorage] %s; resetting file", e)
            return {}, True

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp, self.path)

    def get_item(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return value if value is None else str(value)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data, _ = self._read_for_update()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data, reset = self._read_for_update()
            if key in data or reset:
                data.pop(key, None)
                self._write(data)
                logger.debug("[JsonFileStorage] Removed '%s' from %s", key, self.path)
