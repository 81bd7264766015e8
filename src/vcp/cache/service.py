"""Versioned, bounded, persisted cache of pipeline results.

Lifecycle: construct -> ``hydrate()`` (or ``await start()``) -> use ->
``await dispose()``. Entries live in an insertion-ordered dict used as an
LRU: a hit deletes and reinserts the key, eviction pops from the front.

The whole table is persisted as one JSON document under ``table_key`` with
a global version stamp under ``stamp_key``. Persistence runs on a worker
thread and is only awaited by ``flush()`` / ``dispose()``; failures are
logged and counted, never raised.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

from vcp.errors import CacheCorruptionError
from vcp.extraction.types import Span
from vcp.shared.storage import StorageBackend

from .keys import text_key_prefix

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 200
DEFAULT_TTL_SECONDS = 24 * 3600


@dataclass(frozen=True)
class CacheEntry:
    key: str
    spans: tuple[Span, ...]
    meta: dict[str, Any]
    signature: str
    timestamp: float
    version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "spans": [s.to_dict() for s in self.spans],
            "meta": self.meta,
            "signature": self.signature,
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            spans=tuple(Span.from_dict(s) for s in data.get("spans", [])),
            meta=dict(data.get("meta") or {}),
            signature=data.get("signature", ""),
            timestamp=float(data["timestamp"]),
            version=data["version"],
        )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expired: int = 0
    errors: int = 0
    coalesced: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "expired": self.expired,
            "errors": self.errors,
            "coalesced": self.coalesced,
            "hit_rate": round(self.hit_rate, 4),
        }


@dataclass
class _Flight:
    task: asyncio.Future
    waiters: int = 0


class ResultCache:
    """In-memory LRU of ``CacheEntry`` backed by a ``StorageBackend``."""

    def __init__(
        self,
        storage: StorageBackend | None = None,
        *,
        version: str,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        namespace: str = "span-cache",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.storage = storage
        self.version = version
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self.table_key = f"{namespace}:entries"
        self.stamp_key = f"{namespace}:version"
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._hydrated = False
        self._inflight: dict[str, _Flight] = {}
        self._pending: set[asyncio.Future] = set()
        self._write_lock = threading.Lock()
        self._write_seq = 0
        self._written_seq = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def hydrate(self) -> int:
        """Load persisted entries; runs at most once per instance.

        Returns the number of entries loaded. A version stamp mismatch wipes
        the store; a corrupt payload clears the cache and starts cold.
        """
        if self._hydrated:
            return len(self._entries)
        self._hydrated = True
        if self.storage is None:
            return 0

        try:
            stamp = self.storage.get_item(self.stamp_key)
            if stamp != self.version:
                if stamp is not None:
                    logger.info("Cache version changed (%s -> %s); wiping store", stamp, self.version)
                self._wipe_storage()
                self.storage.set_item(self.stamp_key, self.version)
                return 0
            entries = self._decode_table(self.storage.get_item(self.table_key))
        except CacheCorruptionError as e:
            self._stats.errors += 1
            logger.warning("Cache payload corrupt (%s); clearing and starting cold", e)
            self._safe_wipe()
            self._write_stamp()
            return 0
        except Exception as e:
            self._stats.errors += 1
            logger.warning("Cache hydrate failed (%s: %s); starting cold", type(e).__name__, e)
            return 0

        now = self._clock()
        for entry in entries:
            if entry.version != self.version or self._is_expired(entry, now):
                self._stats.expired += 1
                continue
            self._entries.pop(entry.key, None)
            self._entries[entry.key] = entry
        while len(self._entries) > self.max_entries:
            self._entries.pop(next(iter(self._entries)))
        logger.info("Cache hydrated: %d entries from %s", len(self._entries), type(self.storage).__name__)
        return len(self._entries)

    async def start(self) -> int:
        """Hydrate on a worker thread, off the event loop."""
        return await asyncio.to_thread(self.hydrate)

    async def flush(self) -> None:
        """Wait for pending background persistence."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def dispose(self) -> None:
        for flight in list(self._inflight.values()):
            flight.task.cancel()
        self._inflight.clear()
        await self.flush()

    # ------------------------------------------------------------------
    # Reads / writes
    # ------------------------------------------------------------------

    def _ensure_hydrated(self) -> None:
        if self._hydrated:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            logger.warning("Cache used before `await start()`; hydrating on the event loop")
        self.hydrate()

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl_seconds

    @staticmethod
    def _copy(entry: CacheEntry) -> CacheEntry:
        return replace(entry, meta=copy.deepcopy(entry.meta))

    def get(self, key: str) -> CacheEntry | None:
        """Fresh entry for *key*, or None. A hit refreshes its LRU position."""
        self._ensure_hydrated()
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None
        if entry.version != self.version:
            del self._entries[key]
            self._stats.misses += 1
            return None
        if self._is_expired(entry, self._clock()):
            # kept for peek_stale(); eviction reclaims it
            self._stats.expired += 1
            self._stats.misses += 1
            return None
        del self._entries[key]
        self._entries[key] = entry
        self._stats.hits += 1
        return self._copy(entry)

    def peek_stale(self, key: str) -> CacheEntry | None:
        """Entry for *key* regardless of age (same version only); no stats."""
        self._ensure_hydrated()
        entry = self._entries.get(key)
        if entry is None or entry.version != self.version:
            return None
        return self._copy(entry)

    def set(self, key: str, spans: list[Span] | tuple[Span, ...], meta: dict[str, Any] | None = None,
            signature: str = "") -> CacheEntry:
        self._ensure_hydrated()
        entry = CacheEntry(
            key=key,
            spans=tuple(spans),
            meta=copy.deepcopy(meta or {}),
            signature=signature,
            timestamp=self._clock(),
            version=self.version,
        )
        self._entries.pop(key, None)
        self._entries[key] = entry
        self._stats.sets += 1
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._stats.evictions += 1
        self._schedule_persist()
        return self._copy(entry)

    def invalidate(self, text: str) -> int:
        """Drop every entry whose key was derived from canonical *text*."""
        prefix = text_key_prefix(text)
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            self._schedule_persist()
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        if self.storage is not None:
            self._safe_wipe()
            self._write_stamp()

    def stats(self) -> dict[str, Any]:
        return {
            **self._stats.to_dict(),
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "version": self.version,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Coalescing
    # ------------------------------------------------------------------

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
        """Run *compute* once per key for all concurrent callers.

        Each caller awaits the shared task through ``asyncio.shield``; the
        task is cancelled only when its last waiter is.
        """
        flight = self._inflight.get(key)
        if flight is None:
            flight = _Flight(asyncio.ensure_future(compute()))
            self._inflight[key] = flight
            flight.task.add_done_callback(lambda _t, k=key, f=flight: self._forget(k, f))
        else:
            self._stats.coalesced += 1
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters == 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    def _forget(self, key: str, flight: _Flight) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _encode_table(self) -> str:
        return json.dumps({
            "version": self.version,
            "entries": [e.to_dict() for e in self._entries.values()],
        })

    def _decode_table(self, payload: str | None) -> list[CacheEntry]:
        if payload is None:
            return []
        try:
            data = json.loads(payload)
            if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
                raise ValueError("expected an object with an 'entries' list")
            return [CacheEntry.from_dict(item) for item in data["entries"]]
        except (ValueError, KeyError, TypeError) as e:
            raise CacheCorruptionError(f"{self.table_key}: {e}") from e

    def _write_table(self, payload: str, seq: int) -> None:
        with self._write_lock:
            # an older snapshot must not overwrite a newer one
            if seq < self._written_seq:
                return
            self._written_seq = seq
            try:
                self.storage.set_item(self.table_key, payload)
            except Exception as e:
                self._stats.errors += 1
                logger.warning("Cache persist failed (%s: %s)", type(e).__name__, e)

    def _schedule_persist(self) -> None:
        if self.storage is None:
            return
        payload = self._encode_table()
        self._write_seq += 1
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_table(payload, self._write_seq)
            return
        task = loop.create_task(asyncio.to_thread(self._write_table, payload, self._write_seq))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _wipe_storage(self) -> None:
        purge = getattr(self.storage, "purge", None)
        if callable(purge):
            purge(f"{self.namespace}:")
        self.storage.remove_item(self.table_key)
        self.storage.remove_item(self.stamp_key)

    def _write_stamp(self) -> None:
        try:
            self.storage.set_item(self.stamp_key, self.version)
        except Exception as e:
            self._stats.errors += 1
            logger.warning("Cache stamp write failed: %s", e)

    def _safe_wipe(self) -> None:
        try:
            self._wipe_storage()
        except Exception as e:
            self._stats.errors += 1
            logger.warning("Cache wipe failed (%s: %s)", type(e).__name__, e)
