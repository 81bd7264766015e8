"""Tests for LabelingSession: supersede, cooldown and cache fallback."""
import asyncio

import pytest

from vcp.errors import ExtractionError
from vcp.extraction.open_vocab import ExtractionOutcome, StaticSpanExtractor
from vcp.extraction.session import LabelingSession

from helpers import FakeClock, RateLimitedExtractor


class FlakyExtractor:
    """Labels successfully once, then fails every call."""

    name = "flaky"

    def __init__(self, labels):
        self.inner = StaticSpanExtractor(labels)
        self.calls = 0

    async def extract(self, request):
        self.calls += 1
        if self.calls == 1:
            return await self.inner.extract(request)
        return ExtractionOutcome.failure(ExtractionError("model output invalid"))


class TestCooldown:
    """Tests for the rate-limit cooldown."""

    async def test_rate_limit_opens_cooldown(self):
        clock = FakeClock()
        extractor = RateLimitedExtractor()
        session = LabelingSession(extractor, cooldown_seconds=30, clock=clock)

        result = await session.label("Golden hour over a red desert")
        assert result.meta["degraded"] is True
        assert session.in_cooldown
        assert session.cooldown_remaining == 30.0

    async def test_same_text_during_cooldown_serves_last_result(self):
        clock = FakeClock()
        extractor = RateLimitedExtractor()
        session = LabelingSession(extractor, cooldown_seconds=30, clock=clock)
        first = await session.label("Golden hour over a red desert")

        clock.advance(10)
        again = await session.label("Golden hour over a red desert")
        assert extractor.calls == 1
        assert again.meta["status"] == "stale"
        assert again.meta["cooldown_remaining"] == 20.0
        assert again.spans == first.spans

    async def test_new_text_during_cooldown_is_deterministic_only(self):
        clock = FakeClock()
        extractor = RateLimitedExtractor()
        session = LabelingSession(extractor, cooldown_seconds=30, clock=clock)
        await session.label("Golden hour over a red desert")

        result = await session.label("A slow push in at 24fps")
        assert extractor.calls == 1
        assert result.meta["status"] == "stale"
        assert result.meta["open_vocab"]["extractor"] == "none"
        assert [s.quote for s in result.spans] == ["slow push in", "24fps"]

    async def test_stale_cache_served_during_cooldown(self, cache, astronaut_text, static_extractor):
        clock = FakeClock()
        warm = LabelingSession(static_extractor, cache=cache, clock=clock)
        await warm.label(astronaut_text)

        session = LabelingSession(static_extractor, cache=cache, clock=clock)
        session._open_cooldown(None)
        result = await session.label(astronaut_text)
        assert result.meta["status"] == "stale"
        assert result.meta["cache"]["hit"] is True
        assert static_extractor.call_count == 1

    async def test_model_called_again_after_cooldown(self):
        clock = FakeClock()
        extractor = RateLimitedExtractor()
        session = LabelingSession(extractor, cooldown_seconds=30, clock=clock)
        await session.label("Golden hour")
        clock.advance(31)
        assert not session.in_cooldown
        await session.label("Golden hour")
        assert extractor.calls == 2


class TestCacheFallback:
    """Tests for serving cached results when the model stage fails."""

    async def test_expired_entry_served_on_failure(self, cache, clock, astronaut_text):
        extractor = FlakyExtractor({
            astronaut_text: [{"text": "red desert", "role": "environment.location", "confidence": 0.9}],
        })
        session = LabelingSession(extractor, cache=cache)
        first = await session.label(astronaut_text)
        assert "red desert" in [s.quote for s in first.spans]

        clock.advance(cache.ttl_seconds + 1)
        result = await session.label(astronaut_text)
        assert extractor.calls == 2
        assert result.meta["source"] == "cache-fallback"
        assert "model output invalid" in result.meta["error"]
        assert result.spans == first.spans

    async def test_no_cache_entry_returns_degraded(self, cache):
        session = LabelingSession(FlakyExtractor({}), cache=cache)
        session.extractor.calls = 1
        result = await session.label("Golden hour over a red desert")
        assert result.meta["degraded"] is True
        assert "source" not in result.meta


class TestSupersede:
    """Tests for cancelling an in-flight request."""

    async def test_new_request_cancels_previous(self):
        extractor = StaticSpanExtractor({}, delay=0.05)
        session = LabelingSession(extractor)

        first = asyncio.ensure_future(session.label("A red desert"))
        await asyncio.sleep(0)
        second = await session.label("A blue ocean")

        with pytest.raises(asyncio.CancelledError):
            await first
        assert second.canonical.text == "A blue ocean"
        assert session.last_result is second

    async def test_cancel_without_request_is_noop(self):
        session = LabelingSession(StaticSpanExtractor({}))
        session.cancel()
        assert session.last_result is None

    async def test_shared_session_runs_requests_concurrently(self):
        extractor = StaticSpanExtractor({}, delay=0.05)
        session = LabelingSession(extractor, supersede=False)

        first, second = await asyncio.gather(session.label("A red desert"), session.label("A blue ocean"))

        assert first.canonical.text == "A red desert"
        assert second.canonical.text == "A blue ocean"

    async def test_shared_session_pools_cooldown(self):
        extractor = RateLimitedExtractor()
        session = LabelingSession(extractor, supersede=False, clock=FakeClock())

        await session.label("A red desert")
        result = await session.label("A blue ocean")

        assert result.meta["status"] == "stale"
        assert extractor.calls == 1
