"""Hybrid span extraction pipeline.

Stages:
    1. Canonicalize the prompt text (NFC, invisible characters stripped).
    2. Candidate generation: context matcher and closed vocabulary run while
       the open-vocabulary extractor call is in flight.
    3. Merge/resolve into the final span list.

The result cache wraps the whole call. Only runs whose open-vocabulary stage
succeeded are cached; a failed stage degrades to deterministic spans.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

from vcp.cache import CacheEntry, ResultCache, build_cache_key, text_signature
from vcp.errors import ExtractionError

from .canonical import CanonicalText, canonicalize
from .closed_vocab import Lexicon, match_closed_vocab
from .context_match import match_context
from .merger import resolve_spans
from .open_vocab import ExtractionOutcome, ExtractionRequest, NullSpanExtractor, SpanExtractor
from .taxonomy import TAXONOMY_VERSION
from .types import LabelingPolicy, PromptContext, Span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    spans: tuple[Span, ...]
    canonical: CanonicalText
    meta: dict[str, Any]

    @property
    def is_adversarial(self) -> bool:
        return bool(self.meta.get("is_adversarial"))

    @property
    def cache_hit(self) -> bool:
        return bool(self.meta.get("cache", {}).get("hit"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "spans": [s.to_dict() for s in self.spans],
            "canonicalText": self.canonical.text,
            "meta": self.meta,
        }


@dataclass(frozen=True)
class PreparedRequest:
    """Normalized inputs of one ``run()`` call."""

    canonical: CanonicalText
    context: PromptContext
    policy: LabelingPolicy
    extractor: SpanExtractor
    occurrences: dict[str, int]
    cache_key: str


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def prepare(
    text: str,
    context: PromptContext | dict[str, Any] | None = None,
    options: dict[str, Any] | None = None,
    *,
    extractor: SpanExtractor | None = None,
    policy_base: LabelingPolicy | None = None,
) -> PreparedRequest:
    """Canonicalize inputs and derive the cache key without running anything."""
    options = dict(options or {})
    occurrences = options.pop("occurrences", None) or {}
    canonical = canonicalize(text)
    ctx = context if isinstance(context, PromptContext) else PromptContext.from_mapping(context)
    policy = LabelingPolicy.from_options(options, policy_base)
    extractor = extractor or NullSpanExtractor()
    key = build_cache_key(canonical.text, policy, provider=extractor.name, context=ctx.to_dict())
    return PreparedRequest(canonical, ctx, policy, extractor, dict(occurrences), key)


async def _call_extractor(extractor: SpanExtractor, request: ExtractionRequest) -> ExtractionOutcome:
    try:
        return await extractor.extract(request)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # adapters report failure as a value; anything raised is an adapter bug
        logger.exception("Extractor %s raised instead of returning an outcome", extractor.name)
        return ExtractionOutcome.failure(ExtractionError(str(e) or type(e).__name__, reason="adapter_error"))


async def _label(prepared: PreparedRequest, lexicon: Lexicon | None) -> PipelineResult:
    started = time.perf_counter()
    canonical = prepared.canonical
    policy = prepared.policy
    timings: dict[str, float] = {}

    # --- Stage 2: candidate generation ---
    request = ExtractionRequest(
        text=canonical.text,
        max_spans=policy.max_spans,
        min_confidence=policy.min_confidence,
        template_version=policy.template_version,
    )
    open_started = time.perf_counter()
    task = asyncio.ensure_future(_call_extractor(prepared.extractor, request))
    try:
        step = time.perf_counter()
        context_spans = match_context(canonical, prepared.context, prepared.occurrences)
        closed_spans = match_closed_vocab(canonical, lexicon)
        timings["deterministic"] = _elapsed_ms(step)
        outcome = await task
    except BaseException:
        task.cancel()
        raise
    timings["open_vocab"] = _elapsed_ms(open_started)

    if not outcome.ok:
        logger.warning(
            "Open-vocab stage failed (%s) for %s; degrading to deterministic spans",
            outcome.failure_reason,
            prepared.cache_key,
        )

    # --- Stage 3: merge ---
    step = time.perf_counter()
    merged = resolve_spans(
        canonical,
        policy,
        context_spans=context_spans,
        closed_spans=closed_spans,
        outcome=outcome,
    )
    timings["merge"] = _elapsed_ms(step)
    timings["total"] = _elapsed_ms(started)

    open_vocab_meta = {"extractor": prepared.extractor.name, **outcome.summary()}
    if outcome.error is not None:
        open_vocab_meta["error"] = str(outcome.error)

    meta = {
        "cache": {"hit": False, "key": prepared.cache_key},
        "counts": {
            "context": len(context_spans),
            "closed_vocab": len(closed_spans),
            "open_vocab": len(outcome.spans),
            "final": len(merged.spans),
        },
        "open_vocab": open_vocab_meta,
        "is_adversarial": merged.is_adversarial,
        "degraded": not outcome.ok,
        "merge": asdict(merged.stats),
        "raw_spans": [s.to_dict() for s in merged.raw],
        "pre_repair_spans": [s.to_dict() for s in merged.pre_repair],
        "timings_ms": timings,
        "policy": policy.to_dict(),
        "taxonomy_version": TAXONOMY_VERSION,
        "template_version": policy.template_version,
    }
    return PipelineResult(spans=merged.spans, canonical=canonical, meta=meta)


def result_from_entry(entry: CacheEntry, canonical: CanonicalText, **meta_updates: Any) -> PipelineResult:
    """Rebuild a ``PipelineResult`` from a cached entry."""
    meta = dict(entry.meta)
    meta.update(meta_updates)
    return PipelineResult(spans=tuple(entry.spans), canonical=canonical, meta=meta)


async def run(
    text: str,
    context: PromptContext | dict[str, Any] | None = None,
    options: dict[str, Any] | None = None,
    *,
    extractor: SpanExtractor | None = None,
    cache: ResultCache | None = None,
    policy_base: LabelingPolicy | None = None,
    lexicon: Lexicon | None = None,
) -> PipelineResult:
    """Label control-point spans in *text*.

    Args:
        text: Raw prompt text.
        context: Known semantic fields (subject, action, location, time, style).
        options: ``max_spans``, ``min_confidence``, ``template_version``,
            ``policy`` (nested policy overrides) and ``occurrences``
            (context field -> 0-based occurrence index).
        extractor: Open-vocabulary adapter; ``NullSpanExtractor`` when omitted.
        cache: Result cache wrapping the call; skipped when None.
        policy_base: Defaults the options are layered on.
        lexicon: Closed vocabulary; the packaged one when omitted.

    Returns:
        PipelineResult with spans sorted by start offset.
    """
    started = time.perf_counter()
    # --- Stage 1: canonicalize ---
    prepared = prepare(text, context, options, extractor=extractor, policy_base=policy_base)
    canonical = prepared.canonical

    if cache is None or not canonical.text:
        return await _label(prepared, lexicon)

    key = prepared.cache_key
    entry = cache.get(key)
    if entry is not None:
        logger.debug("Cache hit %s", key)
        return result_from_entry(
            entry, canonical,
            cache={"hit": True, "key": key, "age_s": round(time.time() - entry.timestamp, 1)},
            timings_ms={"total": _elapsed_ms(started)},
        )

    async def compute() -> PipelineResult:
        result = await _label(prepared, lexicon)
        if result.meta["open_vocab"]["ok"]:
            cache.set(key, result.spans, result.meta, signature=text_signature(canonical.text))
        return result

    return await cache.get_or_compute(key, compute)
