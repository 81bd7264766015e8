"""Request-scoped front door for interactive callers.

One session serves one editor: each ``label()`` call supersedes (cancels)
the previous in-flight one. A shared session (``supersede=False``, as the
HTTP service uses) lets requests run concurrently and only pools the
cooldown state. After a rate-limited extraction the session
stops calling the model for a cooldown window. When the model stage fails,
the last cached result for the same request is preferred over a degraded
deterministic-only answer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from vcp.cache import ResultCache

from .closed_vocab import Lexicon
from .open_vocab import NullSpanExtractor, SpanExtractor
from .pipeline import PipelineResult, prepare, result_from_entry, run
from .types import LabelingPolicy, PromptContext

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 30.0


class LabelingSession:
    """Serializes labeling requests from a single interactive caller."""

    def __init__(
        self,
        extractor: SpanExtractor,
        *,
        cache: ResultCache | None = None,
        policy_base: LabelingPolicy | None = None,
        lexicon: Lexicon | None = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        supersede: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.extractor = extractor
        self.cache = cache
        self.policy_base = policy_base
        self.lexicon = lexicon
        self.cooldown_seconds = cooldown_seconds
        self.supersede = supersede
        self._clock = clock
        self._current: asyncio.Task | None = None
        self._last: PipelineResult | None = None
        self._cooldown_until = 0.0

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    @property
    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    @property
    def last_result(self) -> PipelineResult | None:
        return self._last

    def cancel(self) -> None:
        """Cancel the in-flight request, if any."""
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._current = None

    async def label(
        self,
        text: str,
        context: PromptContext | dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> PipelineResult:
        if self.supersede:
            if self._current is not None and not self._current.done():
                logger.debug("Superseding in-flight labeling request")
            self.cancel()

        if self.in_cooldown:
            return await self._during_cooldown(text, context, options)

        task = asyncio.ensure_future(run(
            text, context, options,
            extractor=self.extractor,
            cache=self.cache,
            policy_base=self.policy_base,
            lexicon=self.lexicon,
        ))
        if self.supersede:
            self._current = task
        try:
            result = await task
        except (asyncio.CancelledError, ValueError):
            raise
        except Exception as e:
            logger.error("Labeling failed: %s: %s", type(e).__name__, e)
            fallback = self._cache_fallback(text, context, options, e)
            if fallback is None:
                raise
            return fallback
        finally:
            if self._current is task:
                self._current = None

        open_vocab = result.meta.get("open_vocab", {})
        if open_vocab.get("reason") == "rate_limited":
            self._open_cooldown(open_vocab.get("retry_after"))
        if not open_vocab.get("ok", True):
            fallback = self._cache_fallback(text, context, options, open_vocab.get("error", open_vocab.get("reason")))
            if fallback is not None:
                return fallback

        self._last = result
        return result

    def _open_cooldown(self, retry_after: float | None) -> None:
        window = max(self.cooldown_seconds, float(retry_after or 0.0))
        self._cooldown_until = self._clock() + window
        logger.warning("Rate limited; suppressing model calls for %.0fs", window)

    async def _during_cooldown(
        self, text: str, context: Any, options: dict[str, Any] | None,
    ) -> PipelineResult:
        prepared = prepare(text, context, options, extractor=self.extractor, policy_base=self.policy_base)
        remaining = round(self.cooldown_remaining, 1)

        if self._last is not None and self._last.canonical.text == prepared.canonical.text:
            return self._mark_stale(self._last, cooldown_remaining=remaining)

        if self.cache is not None:
            entry = self.cache.peek_stale(prepared.cache_key)
            if entry is not None:
                result = result_from_entry(entry, prepared.canonical, cache={"hit": True, "key": entry.key})
                return self._mark_stale(result, cooldown_remaining=remaining)

        # nothing known for this text: deterministic stages only
        result = await run(
            text, context, options,
            extractor=NullSpanExtractor(),
            policy_base=self.policy_base,
            lexicon=self.lexicon,
        )
        return self._mark_stale(result, cooldown_remaining=remaining)

    @staticmethod
    def _mark_stale(result: PipelineResult, **extra: Any) -> PipelineResult:
        meta = {**result.meta, "status": "stale", **extra}
        return PipelineResult(spans=result.spans, canonical=result.canonical, meta=meta)

    def _cache_fallback(
        self, text: str, context: Any, options: dict[str, Any] | None, error: Any,
    ) -> PipelineResult | None:
        if self.cache is None:
            return None
        try:
            prepared = prepare(text, context, options, extractor=self.extractor, policy_base=self.policy_base)
        except ValueError:
            return None
        entry = self.cache.peek_stale(prepared.cache_key)
        if entry is None:
            return None
        age = round(time.time() - entry.timestamp, 1)
        logger.info("Serving cached result for %s (age %.0fs) after error", entry.key, age)
        return result_from_entry(
            entry,
            prepared.canonical,
            source="cache-fallback",
            cache_age=age,
            error=str(error),
            cache={"hit": True, "key": entry.key},
        )
