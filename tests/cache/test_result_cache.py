"""Tests for ResultCache: LRU, TTL, versioning, persistence and coalescing."""
import asyncio
import logging

import pytest

from vcp.cache import ResultCache, build_cache_key, live_version
from vcp.extraction.types import LabelingPolicy, Span, SpanSource
from vcp.shared.storage import JsonFileStorage, MemoryStorage

VERSION = live_version("v3")


def golden_span():
    return Span(start=0, end=11, quote="golden hour", category="lighting.timeOfDay",
                confidence=1.0, source=SpanSource.CLOSED_VOCAB)


class BrokenStorage(MemoryStorage):
    """Accepts the version stamp but fails every table write."""

    def set_item(self, key, value):
        if key.endswith(":entries"):
            raise OSError("disk full")
        super().set_item(key, value)


class TestReadsAndWrites:
    """Tests for get/set/peek_stale."""

    def test_miss_then_hit(self, cache):
        assert cache.get("k") is None
        cache.set("k", [golden_span()], {"note": "x"})
        entry = cache.get("k")
        assert entry.spans == (golden_span(),)
        stats = cache.stats()
        assert (stats["hits"], stats["misses"], stats["sets"]) == (1, 1, 1)
        assert stats["hit_rate"] == 0.5

    def test_returned_meta_is_a_copy(self, cache):
        cache.set("k", [], {"counts": {"final": 1}})
        cache.get("k").meta["counts"]["final"] = 99
        assert cache.get("k").meta["counts"]["final"] == 1

    def test_lru_eviction(self, cache):
        for i in range(10):
            cache.set(f"k{i}", [])
        cache.get("k0")
        cache.set("k10", [])
        assert "k0" in cache
        assert "k1" not in cache
        assert len(cache) == 10
        assert cache.stats()["evictions"] == 1

    def test_ttl_expiry_keeps_stale_copy(self, cache, clock):
        cache.set("k", [golden_span()])
        clock.advance(cache.ttl_seconds + 1)
        assert cache.get("k") is None
        assert cache.stats()["expired"] == 1
        assert cache.peek_stale("k").spans == (golden_span(),)

    def test_invalidate_by_text(self, cache):
        text = "golden hour"
        cache.set(build_cache_key(text, LabelingPolicy()), [])
        cache.set(build_cache_key(text, LabelingPolicy(max_spans=5)), [])
        other = build_cache_key("blue hour", LabelingPolicy())
        cache.set(other, [])
        assert cache.invalidate(text) == 2
        assert list(cache._entries) == [other]

    def test_clear(self, cache, storage):
        cache.set("k", [])
        cache.clear()
        assert len(cache) == 0
        assert storage.get_item("span-cache:entries") is None
        assert storage.get_item("span-cache:version") == VERSION

    def test_max_entries_must_be_positive(self):
        with pytest.raises(ValueError):
            ResultCache(version=VERSION, max_entries=0)


class TestPersistence:
    """Tests for hydrate and background persistence."""

    async def test_start_hydrates_off_loop_without_warning(self, storage, clock, caplog):
        cache = ResultCache(storage, version=VERSION, clock=clock)
        with caplog.at_level(logging.WARNING, logger="vcp.cache.service"):
            await cache.start()
            cache.get("k")
        assert "before `await start()`" not in caplog.text

    async def test_lazy_hydrate_on_loop_warns(self, storage, clock, caplog):
        cache = ResultCache(storage, version=VERSION, clock=clock)
        with caplog.at_level(logging.WARNING, logger="vcp.cache.service"):
            assert cache.get("k") is None
        assert "before `await start()`" in caplog.text

    def test_round_trip_through_storage(self, storage, clock):
        first = ResultCache(storage, version=VERSION, clock=clock)
        first.hydrate()
        first.set("k", [golden_span()], {"counts": {"final": 1}}, signature="abc")

        second = ResultCache(storage, version=VERSION, clock=clock)
        assert second.hydrate() == 1
        entry = second.get("k")
        assert entry.spans == (golden_span(),)
        assert entry.signature == "abc"

    async def test_flush_waits_for_background_write(self, storage, clock):
        cache = ResultCache(storage, version=VERSION, clock=clock)
        await cache.start()
        cache.set("k", [golden_span()])
        await cache.flush()
        assert "k" in storage.get_item("span-cache:entries")

    def test_version_change_wipes_store(self, storage, clock):
        old = ResultCache(storage, version="1|2.0.0|v2", clock=clock)
        old.hydrate()
        old.set("k", [])

        fresh = ResultCache(storage, version=VERSION, clock=clock)
        assert fresh.hydrate() == 0
        assert storage.get_item("span-cache:version") == VERSION
        assert storage.get_item("span-cache:entries") is None

    def test_corrupt_payload_starts_cold(self, clock):
        storage = MemoryStorage({"span-cache:version": VERSION, "span-cache:entries": "{not json"})
        cache = ResultCache(storage, version=VERSION, clock=clock)
        assert cache.hydrate() == 0
        assert cache.stats()["errors"] == 1
        assert storage.get_item("span-cache:entries") is None

    def test_corrupt_file_recovers(self, tmp_path, clock):
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        cache = ResultCache(JsonFileStorage(path), version=VERSION, clock=clock)
        assert cache.hydrate() == 0
        assert cache.stats()["errors"] == 1
        cache.set("k", [golden_span()])
        assert cache.stats()["errors"] == 1

        reopened = ResultCache(JsonFileStorage(path), version=VERSION, clock=clock)
        assert reopened.hydrate() == 1
        assert reopened.get("k").spans == (golden_span(),)

    def test_expired_entries_skipped_on_hydrate(self, storage, clock):
        first = ResultCache(storage, version=VERSION, clock=clock)
        first.hydrate()
        first.set("old", [])
        clock.advance(first.ttl_seconds + 1)
        first.set("new", [])

        second = ResultCache(storage, version=VERSION, clock=clock)
        assert second.hydrate() == 1
        assert "new" in second

    def test_hydrate_runs_once(self, cache):
        cache.set("k", [])
        assert cache.hydrate() == 1

    def test_write_failure_is_counted_not_raised(self, clock):
        cache = ResultCache(BrokenStorage(), version=VERSION, clock=clock)
        cache.hydrate()
        cache.set("k", [])
        assert cache.get("k") is not None
        assert cache.stats()["errors"] == 1

    def test_without_storage(self, clock):
        cache = ResultCache(version=VERSION, clock=clock)
        cache.set("k", [])
        assert cache.get("k") is not None


class TestCoalescing:
    """Tests for get_or_compute()."""

    async def test_concurrent_callers_share_one_compute(self, cache):
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "labeled"

        results = await asyncio.gather(*(cache.get_or_compute("k", compute) for _ in range(3)))
        assert results == ["labeled"] * 3
        assert calls == 1
        assert cache.stats()["coalesced"] == 2

    async def test_cancelling_one_waiter_keeps_shared_task(self, cache):
        async def compute():
            await asyncio.sleep(0.02)
            return "labeled"

        first = asyncio.ensure_future(cache.get_or_compute("k", compute))
        second = asyncio.ensure_future(cache.get_or_compute("k", compute))
        await asyncio.sleep(0)
        first.cancel()
        assert await second == "labeled"
        assert first.cancelled()

    async def test_last_waiter_cancels_compute(self, cache):
        started = asyncio.Event()
        finished = False

        async def compute():
            nonlocal finished
            started.set()
            await asyncio.sleep(3600)
            finished = True

        waiter = asyncio.ensure_future(cache.get_or_compute("k", compute))
        await started.wait()
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        await asyncio.sleep(0.01)
        assert not finished
        assert "k" not in cache._inflight

    async def test_failure_not_shared_with_later_calls(self, cache):
        async def boom():
            raise RuntimeError("model down")

        async def ok():
            return "labeled"

        with pytest.raises(RuntimeError):
            await cache.get_or_compute("k", boom)
        await asyncio.sleep(0)
        assert await cache.get_or_compute("k", ok) == "labeled"
