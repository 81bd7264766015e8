"""Run the pipeline over a golden set and assemble a snapshot."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from vcp.cache import ResultCache
from vcp.config import parse_bool
from vcp.extraction.open_vocab import SpanExtractor
from vcp.extraction.pipeline import run
from vcp.extraction.taxonomy import Parent
from vcp.extraction.types import LabelingPolicy, Span
from vcp.shared.logger import RunLogger

from .golden import GoldenPrompt, GoldenSet
from .metrics import (
    SECTION_NAMES,
    EvalSpan,
    EvaluationResult,
    aggregate,
    evaluate_spans,
    granularity_issues,
    rubric_scores,
    score_distribution,
    section_errors,
    top_confusions,
    update_confusion_matrix,
)

logger = logging.getLogger(__name__)

# Spans shorter than this are never split by the fragment fault.
_FRAGMENT_MIN_LENGTH = 8
_OVEREXTRACT_COUNT = 10


@dataclass(frozen=True)
class FaultFlags:
    """Deliberate prediction corruption used to prove the harness catches it."""

    fragment: bool = False
    overextract: bool = False

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "FaultFlags":
        env = os.environ if env is None else env
        return cls(
            fragment=parse_bool(env.get("VCP_EVAL_FAULT_SPAN_FRAGMENT", "0")),
            overextract=parse_bool(env.get("VCP_EVAL_FAULT_SPAN_OVEREXTRACT", "0")),
        )

    @property
    def active(self) -> bool:
        return self.fragment or self.overextract


def apply_fault_injection(text: str, spans: list[EvalSpan], faults: FaultFlags) -> list[EvalSpan]:
    """Split long spans in half and/or append one-character junk spans."""
    mutated = list(spans)
    if faults.fragment:
        fragmented = []
        for s in mutated:
            if s.end - s.start < _FRAGMENT_MIN_LENGTH:
                fragmented.append(s)
                continue
            mid = s.start + (s.end - s.start) // 2
            fragmented.append(EvalSpan(s.start, mid, s.role, text[s.start:mid]))
            fragmented.append(EvalSpan(mid, s.end, s.role, text[mid:s.end]))
        mutated = fragmented
    if faults.overextract and text:
        step = max(1, len(text) // _OVEREXTRACT_COUNT)
        extras = [
            EvalSpan(start, min(len(text), start + 1), "subject.identity", text[start:start + 1])
            for start in range(0, len(text), step)
        ][:_OVEREXTRACT_COUNT]
        mutated.extend(extras)
    return mutated


def _to_eval(span: Span | dict[str, Any]) -> EvalSpan:
    if isinstance(span, Span):
        return EvalSpan(span.start, span.end, span.category, span.quote)
    return EvalSpan(int(span["start"]), int(span["end"]), span["category"], span.get("quote", ""))


async def evaluate_prompt(
    prompt: GoldenPrompt,
    *,
    extractor: SpanExtractor,
    policy: LabelingPolicy | None = None,
    cache: ResultCache | None = None,
    faults: FaultFlags | None = None,
) -> EvaluationResult:
    faults = faults or FaultFlags()
    ground_truth = [EvalSpan(s.start, s.end, s.role, s.text) for s in prompt.spans]
    started = time.perf_counter()
    result = EvaluationResult(
        prompt_id=prompt.id,
        corpus=prompt.corpus,
        text=prompt.text,
        predicted=[],
        ground_truth=ground_truth,
    )
    try:
        output = await run(prompt.text, extractor=extractor, cache=cache, policy_base=policy)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error("[%s] pipeline raised %s: %s", prompt.id, type(e).__name__, e)
        result.error = f"{type(e).__name__}: {e}"
        result.json_valid = False
        result.latency_ms = round((time.perf_counter() - started) * 1000, 1)
        return result

    result.latency_ms = round((time.perf_counter() - started) * 1000, 1)
    open_vocab = output.meta.get("open_vocab", {})
    result.flagged_adversarial = output.is_adversarial
    result.json_valid = bool(open_vocab.get("ok", True) and open_vocab.get("valid_first_try", True))
    if not open_vocab.get("ok", True):
        result.error = f"open_vocab: {open_vocab.get('reason')}"

    predicted = [_to_eval(s) for s in output.spans]
    result.predicted = apply_fault_injection(prompt.text, predicted, faults) if faults.active else predicted
    result.pre_repair = [_to_eval(s) for s in output.meta.get("pre_repair_spans", [])]
    result.scores = rubric_scores(result.predicted, ground_truth, result.flagged_adversarial)
    return result


async def run_evaluation(
    golden: GoldenSet,
    *,
    extractor: SpanExtractor,
    policy: LabelingPolicy | None = None,
    cache: ResultCache | None = None,
    delay_s: float = 0.25,
    faults: FaultFlags | None = None,
    log: RunLogger | None = None,
) -> list[EvaluationResult]:
    """Evaluate every prompt sequentially, pausing *delay_s* between calls."""
    faults = faults if faults is not None else FaultFlags.from_env()
    if faults.active:
        logger.warning("Fault injection active: %s", faults)

    results = []
    total = len(golden)
    for index, prompt in enumerate(golden.prompts, 1):
        if index > 1 and delay_s > 0:
            await asyncio.sleep(delay_s)
        result = await evaluate_prompt(prompt, extractor=extractor, policy=policy, cache=cache, faults=faults)
        results.append(result)
        if log is not None:
            log.progress(index, total, prompt.id)
            log.trace(
                f"  {prompt.id}: pred={len(result.predicted)} gt={len(result.ground_truth)} "
                f"score={result.total_score} latency={result.latency_ms}ms"
                + (f" error={result.error}" if result.error else "")
            )
    return results


def _category_scores(results: Sequence[EvaluationResult]) -> dict[str, dict[str, float]]:
    """Average coverage/precision (0-5) per parent category."""
    scores = {}
    for parent in Parent:
        coverage, precision = [], []
        for r in results:
            gts = [g for g in r.ground_truth if g.parent == parent.value]
            preds = [p for p in r.predicted if p.parent == parent.value]
            if gts:
                coverage.append(evaluate_spans(preds, gts).recall * 5)
            if preds:
                precision.append(evaluate_spans(preds, gts).precision * 5)
        scores[parent.value] = {
            "coverage": round(sum(coverage) / len(coverage), 2) if coverage else 0.0,
            "precision": round(sum(precision) / len(precision), 2) if precision else 0.0,
        }
    return scores


def _errors_by_section(results: Sequence[EvaluationResult]) -> dict[str, dict[str, int]]:
    totals = {name: {"falsePositives": 0, "missed": 0} for name in SECTION_NAMES}
    for r in results:
        if r.expects_adversarial:
            continue
        for section, counts in section_errors(r.predicted, r.ground_truth).items():
            for key, value in counts.items():
                totals[section][key] += value
    return totals


def _top_granularity(results: Sequence[EvaluationResult]) -> list[dict[str, Any]]:
    counts: Counter[str] = Counter()
    examples: dict[str, list[str]] = {}
    for r in results:
        for reason, text in granularity_issues(r.predicted, r.ground_truth):
            counts[reason] += 1
            bucket = examples.setdefault(reason, [])
            if len(bucket) < 3 and text and text not in bucket:
                bucket.append(text)
    return [
        {"reason": reason, "count": count, "examples": examples.get(reason, [])}
        for reason, count in counts.most_common()
    ]


def _avg_score(results: Sequence[EvaluationResult]) -> float:
    scored = [r.total_score for r in results if r.error is None]
    return round(sum(scored) / len(scored), 2) if scored else 0.0


def summarize(results: Sequence[EvaluationResult]) -> dict[str, Any]:
    """Snapshot summary: rubric averages plus corpus metrics."""
    confusion: dict[str, dict[str, int]] = {}
    for r in results:
        update_confusion_matrix(confusion, r.predicted, r.ground_truth)

    corpora: dict[str, dict[str, Any]] = {}
    for corpus in dict.fromkeys(r.corpus for r in results):
        subset = [r for r in results if r.corpus == corpus]
        corpus_metrics = aggregate(subset)
        corpora[corpus] = {
            "promptCount": len(subset),
            "avgScore": _avg_score(subset),
            "relaxedF1": corpus_metrics["relaxedF1"],
            "taxonomyAccuracy": corpus_metrics["taxonomyAccuracy"],
            "safetyPassRate": corpus_metrics["safetyPassRate"],
        }

    return {
        "avgScore": _avg_score(results),
        "avgSpanCount": round(sum(len(r.predicted) for r in results) / len(results), 2) if results else 0.0,
        "scoreDistribution": score_distribution(r.total_score for r in results if r.error is None),
        "categoryScores": _category_scores(results),
        "errorsBySection": _errors_by_section(results),
        "metrics": aggregate(results),
        "corpora": corpora,
        "topTaxonomyErrors": top_confusions(confusion),
        "topGranularityErrors": _top_granularity(results),
        "errorCount": sum(1 for r in results if r.error),
    }


def result_record(r: EvaluationResult) -> dict[str, Any]:
    return {
        "promptId": r.prompt_id,
        "corpus": r.corpus,
        "input": r.text,
        "spanCount": len(r.predicted),
        "spans": [s.to_dict() for s in r.predicted],
        "groundTruth": [s.to_dict() for s in r.ground_truth],
        "rubric": {"scores": r.scores, "totalScore": r.total_score},
        "isAdversarial": r.flagged_adversarial,
        "jsonValid": r.json_valid,
        "error": r.error,
        "latencyMs": r.latency_ms,
    }


def build_snapshot(
    results: Sequence[EvaluationResult],
    *,
    source_file: str,
    extractor_name: str = "",
    timestamp: str | None = None,
) -> dict[str, Any]:
    return {
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
        "promptCount": len(results),
        "sourceFile": source_file,
        "extractor": extractor_name,
        "results": [result_record(r) for r in results],
        "summary": summarize(results),
    }
