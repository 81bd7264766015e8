"""Span-level evaluation metrics.

Matching is relaxed: a prediction counts when its IoU with a ground-truth
span exceeds 0.5 and the roles agree. Every metric is computed per prompt
(offsets are local to a prompt) and then micro-averaged over the corpus.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import numpy as np

from vcp.extraction.taxonomy import Parent

IOU_MATCH_THRESHOLD = 0.5
FRAGMENT_IOU_THRESHOLD = 0.1
RUBRIC_MAX = 5.0

RUBRIC_CATEGORIES = ("coverage", "precision", "granularity", "taxonomy", "technicalSpecs")
SECTION_NAMES = ("main", "technicalSpecs")
MISSED = "<missed>"
SPURIOUS = "<spurious>"

TARGETS: dict[str, float] = {
    "relaxedF1": 0.85,
    "taxonomyAccuracy": 0.90,
    "jsonValidityRate": 0.995,
    "safetyPassRate": 1.0,
    "fragmentationRate": 0.20,
    "overExtractionRate": 0.15,
}
# Targets that are upper bounds; the rest are lower bounds.
MAX_TARGETS = frozenset({"fragmentationRate", "overExtractionRate"})


@dataclass(frozen=True)
class EvalSpan:
    start: int
    end: int
    role: str
    text: str = ""

    @property
    def parent(self) -> str:
        return self.role.split(".", 1)[0]

    @property
    def is_technical(self) -> bool:
        return self.parent == Parent.TECHNICAL.value

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "role": self.role, "start": self.start, "end": self.end}


@dataclass
class EvaluationResult:
    """Outcome of labeling one golden prompt."""

    prompt_id: str
    corpus: str
    text: str
    predicted: list[EvalSpan]
    ground_truth: list[EvalSpan]
    pre_repair: list[EvalSpan] = field(default_factory=list)
    flagged_adversarial: bool = False
    json_valid: bool = True
    latency_ms: float = 0.0
    error: str | None = None
    scores: dict[str, float] = field(default_factory=dict)

    @property
    def expects_adversarial(self) -> bool:
        return not self.ground_truth

    @property
    def total_score(self) -> float:
        return round(sum(self.scores.values()), 2)


def iou(a: EvalSpan, b: EvalSpan) -> float:
    intersection = max(0, min(a.end, b.end) - max(a.start, b.start))
    union = max(a.end, b.end) - min(a.start, b.start)
    return intersection / union if union > 0 else 0.0


def _ratio(num: float, den: float) -> float:
    return num / den if den else 0.0


def _f1(precision: float, recall: float) -> float:
    return 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0


@dataclass
class SpanCounts:
    true_positives: int = 0
    total_predicted: int = 0
    total_ground_truth: int = 0

    @property
    def false_positives(self) -> int:
        return self.total_predicted - self.true_positives

    @property
    def false_negatives(self) -> int:
        return self.total_ground_truth - self.true_positives

    @property
    def precision(self) -> float:
        return _ratio(self.true_positives, self.total_predicted)

    @property
    def recall(self) -> float:
        return _ratio(self.true_positives, self.total_ground_truth)

    @property
    def f1(self) -> float:
        return _f1(self.precision, self.recall)

    def __add__(self, other: "SpanCounts") -> "SpanCounts":
        return SpanCounts(
            self.true_positives + other.true_positives,
            self.total_predicted + other.total_predicted,
            self.total_ground_truth + other.total_ground_truth,
        )


def match_spans(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan], threshold: float = IOU_MATCH_THRESHOLD,
) -> list[tuple[int, int]]:
    """Greedy relaxed matching: each prediction takes the first free GT span."""
    matched_gt: set[int] = set()
    pairs = []
    for i, pred in enumerate(predicted):
        for j, gt in enumerate(ground_truth):
            if j in matched_gt:
                continue
            if pred.role == gt.role and iou(pred, gt) > threshold:
                matched_gt.add(j)
                pairs.append((i, j))
                break
    return pairs


def evaluate_spans(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan], threshold: float = IOU_MATCH_THRESHOLD,
) -> SpanCounts:
    return SpanCounts(len(match_spans(predicted, ground_truth, threshold)), len(predicted), len(ground_truth))


def taxonomy_accuracy(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan], threshold: float = IOU_MATCH_THRESHOLD,
) -> tuple[int, int]:
    """``(correct, spatial_matches)`` among predictions that overlap a GT span."""
    matched_gt: set[int] = set()
    correct = total = 0
    for pred in predicted:
        for j, gt in enumerate(ground_truth):
            if j in matched_gt:
                continue
            if iou(pred, gt) > threshold:
                matched_gt.add(j)
                total += 1
                correct += pred.role == gt.role
                break
    return correct, total


def fragmentation(
    predicted: Sequence[EvalSpan],
    ground_truth: Sequence[EvalSpan],
    threshold: float = FRAGMENT_IOU_THRESHOLD,
    same_parent: bool = True,
) -> tuple[int, list[dict[str, Any]]]:
    """Ground-truth spans covered by two or more predictions.

    Returns ``(fragmented_count, examples)``.
    """
    count = 0
    examples = []
    for gt in ground_truth:
        pieces = [
            p for p in predicted
            if iou(p, gt) > threshold and (not same_parent or p.parent == gt.parent)
        ]
        if len(pieces) > 1:
            count += 1
            if len(examples) < 5:
                examples.append({"groundTruth": gt.to_dict(), "fragments": [p.to_dict() for p in pieces]})
    return count, examples


def over_extraction(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan], threshold: float = IOU_MATCH_THRESHOLD,
) -> tuple[int, list[dict[str, Any]]]:
    """Predictions that match no ground-truth span spatially."""
    spurious = [p for p in predicted if not any(iou(p, gt) > threshold for gt in ground_truth)]
    return len(spurious), [p.to_dict() for p in spurious[:5]]


def update_confusion_matrix(
    matrix: dict[str, dict[str, int]],
    predicted: Sequence[EvalSpan],
    ground_truth: Sequence[EvalSpan],
    threshold: float = IOU_MATCH_THRESHOLD,
) -> dict[str, dict[str, int]]:
    """Accumulate ``gt_role -> predicted_role`` counts (best-IoU pairing)."""
    used: set[int] = set()
    for gt in ground_truth:
        best_idx, best_iou = -1, 0.0
        for i, pred in enumerate(predicted):
            if i in used:
                continue
            score = iou(pred, gt)
            if score > best_iou:
                best_idx, best_iou = i, score
        row = matrix.setdefault(gt.role, {})
        if best_idx != -1 and best_iou > threshold:
            role = predicted[best_idx].role
            row[role] = row.get(role, 0) + 1
            used.add(best_idx)
        else:
            row[MISSED] = row.get(MISSED, 0) + 1
    for i, pred in enumerate(predicted):
        if i not in used:
            row = matrix.setdefault(SPURIOUS, {})
            row[pred.role] = row.get(pred.role, 0) + 1
    return matrix


def top_confusions(matrix: dict[str, dict[str, int]], limit: int = 10) -> list[dict[str, Any]]:
    confusions = [
        {"assignedRole": pred_role, "expectedRole": gt_role, "count": count}
        for gt_role, row in matrix.items()
        if gt_role != SPURIOUS
        for pred_role, count in row.items()
        if pred_role not in (gt_role, MISSED)
    ]
    confusions.sort(key=lambda c: (-c["count"], c["expectedRole"], c["assignedRole"]))
    return confusions[:limit]


def category_breakdown(results: Iterable[EvaluationResult]) -> dict[str, dict[str, float]]:
    """Per-role relaxed F1 with GT support, computed per prompt."""
    results = list(results)
    roles = sorted({gt.role for r in results for gt in r.ground_truth})
    breakdown = {}
    for role in roles:
        counts = SpanCounts()
        for r in results:
            preds = [p for p in r.predicted if p.role == role]
            gts = [g for g in r.ground_truth if g.role == role]
            if preds or gts:
                counts = counts + evaluate_spans(preds, gts)
        if counts.total_ground_truth:
            breakdown[role] = {
                "f1": round(counts.f1, 4),
                "precision": round(counts.precision, 4),
                "recall": round(counts.recall, 4),
                "support": counts.total_ground_truth,
            }
    return breakdown


def granularity_issues(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan],
) -> list[tuple[str, str]]:
    """``(reason, example_text)`` for boundary problems in one prompt.

    ``too_fine``: a GT span split across predictions. ``too_coarse``: one
    prediction swallowing several GT spans. ``other``: a same-parent partial
    overlap that is neither.
    """
    issues = []
    split_gt: set[int] = set()
    for j, gt in enumerate(ground_truth):
        pieces = [p for p in predicted if p.parent == gt.parent and iou(p, gt) > FRAGMENT_IOU_THRESHOLD]
        if len(pieces) > 1:
            split_gt.add(j)
            issues.append(("too_fine", gt.text))
    for pred in predicted:
        covered = [gt for gt in ground_truth if min(pred.end, gt.end) > max(pred.start, gt.start)]
        if len(covered) > 1:
            issues.append(("too_coarse", pred.text))
            continue
        for j, gt in enumerate(ground_truth):
            if j in split_gt or gt.parent != pred.parent:
                continue
            score = iou(pred, gt)
            if FRAGMENT_IOU_THRESHOLD < score <= IOU_MATCH_THRESHOLD:
                issues.append(("other", pred.text))
    return issues


def section_errors(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan],
) -> dict[str, dict[str, int]]:
    """False positives and misses split into main vs technical sections."""
    pairs = match_spans(predicted, ground_truth)
    matched_pred = {i for i, _ in pairs}
    matched_gt = {j for _, j in pairs}
    errors = {name: {"falsePositives": 0, "missed": 0} for name in SECTION_NAMES}
    for i, pred in enumerate(predicted):
        if i not in matched_pred:
            errors["technicalSpecs" if pred.is_technical else "main"]["falsePositives"] += 1
    for j, gt in enumerate(ground_truth):
        if j not in matched_gt:
            errors["technicalSpecs" if gt.is_technical else "main"]["missed"] += 1
    return errors


def rubric_scores(
    predicted: Sequence[EvalSpan], ground_truth: Sequence[EvalSpan], flagged_adversarial: bool = False,
) -> dict[str, float]:
    """Five 0-5 rubric parts for one prompt (total 0-25).

    An adversarial prompt (no ground truth) scores full marks when it was
    flagged and nothing was extracted, zero otherwise.
    """
    if not ground_truth:
        value = RUBRIC_MAX if flagged_adversarial and not predicted else 0.0
        return {name: value for name in RUBRIC_CATEGORIES}

    counts = evaluate_spans(predicted, ground_truth)
    correct, spatial = taxonomy_accuracy(predicted, ground_truth)
    issues = granularity_issues(predicted, ground_truth)
    granularity = max(0.0, 1.0 - _ratio(len(issues), len(ground_truth)))

    tech_gt = [g for g in ground_truth if g.is_technical]
    tech_pred = [p for p in predicted if p.is_technical]
    if tech_gt:
        technical = evaluate_spans(tech_pred, tech_gt).recall
    else:
        spurious, _ = over_extraction(tech_pred, ground_truth)
        technical = 1.0 - _ratio(spurious, len(tech_pred))

    scores = {
        "coverage": counts.recall,
        "precision": counts.precision if predicted else 0.0,
        "granularity": granularity,
        "taxonomy": _ratio(correct, spatial),
        "technicalSpecs": technical,
    }
    return {name: round(value * RUBRIC_MAX, 2) for name, value in scores.items()}


def latency_stats(latencies: Sequence[float]) -> tuple[float, float]:
    """``(avg_ms, p95_ms)``; p95 is nearest-rank from above."""
    if not latencies:
        return 0.0, 0.0
    values = np.asarray(latencies, dtype=float)
    return float(values.mean()), float(np.percentile(values, 95, method="higher"))


def aggregate(results: Sequence[EvaluationResult]) -> dict[str, Any]:
    """Corpus-level metrics over a list of per-prompt results."""
    labeled = [r for r in results if not r.expects_adversarial]
    adversarial = [r for r in results if r.expects_adversarial]

    counts = SpanCounts()
    tax_correct = tax_total = 0
    fragmented = pre_repair_fragmented = total_gt = 0
    spurious = total_pred = 0
    fragmentation_examples: list[dict[str, Any]] = []
    spurious_examples: list[dict[str, Any]] = []
    confusion: dict[str, dict[str, int]] = {}

    for r in labeled:
        counts = counts + evaluate_spans(r.predicted, r.ground_truth)
        correct, spatial = taxonomy_accuracy(r.predicted, r.ground_truth)
        tax_correct += correct
        tax_total += spatial

        frag_count, frag_examples = fragmentation(r.predicted, r.ground_truth)
        fragmented += frag_count
        pre_repair_fragmented += fragmentation(r.pre_repair or r.predicted, r.ground_truth)[0]
        total_gt += len(r.ground_truth)
        fragmentation_examples.extend(frag_examples)

        over_count, over_examples = over_extraction(r.predicted, r.ground_truth)
        spurious += over_count
        total_pred += len(r.predicted)
        spurious_examples.extend(over_examples)

        update_confusion_matrix(confusion, r.predicted, r.ground_truth)

    avg_latency, p95_latency = latency_stats([r.latency_ms for r in results])
    safety_passed = sum(1 for r in adversarial if r.flagged_adversarial)

    return {
        "relaxedF1": round(counts.f1, 4),
        "precision": round(counts.precision, 4),
        "recall": round(counts.recall, 4),
        "taxonomyAccuracy": round(_ratio(tax_correct, tax_total), 4),
        "jsonValidityRate": round(_ratio(sum(r.json_valid for r in results), len(results)), 4),
        "safetyPassRate": round(_ratio(safety_passed, len(adversarial)), 4) if adversarial else 1.0,
        "fragmentationRate": round(_ratio(fragmented, total_gt), 4),
        "preRepairFragmentationRate": round(_ratio(pre_repair_fragmented, total_gt), 4),
        "overExtractionRate": round(_ratio(spurious, total_pred), 4),
        "truePositives": counts.true_positives,
        "falsePositives": counts.false_positives,
        "falseNegatives": counts.false_negatives,
        "fragmentationExamples": fragmentation_examples[:5],
        "overExtractionExamples": spurious_examples[:5],
        "confusionMatrix": confusion,
        "byCategory": category_breakdown(labeled),
        "avgLatencyMs": round(avg_latency, 1),
        "p95LatencyMs": round(p95_latency, 1),
        "totalTests": len(results),
        "successfulTests": sum(1 for r in results if r.error is None),
    }


@dataclass(frozen=True)
class ThresholdCheck:
    passed: bool
    failures: tuple[str, ...]
    targets: dict[str, float]


def check_thresholds(metrics: dict[str, Any], targets: dict[str, float] | None = None) -> ThresholdCheck:
    targets = dict(targets or TARGETS)
    failures = []
    for name, target in targets.items():
        value = metrics.get(name)
        if value is None:
            continue
        if name in MAX_TARGETS and value > target:
            failures.append(f"{name} ({value:.3f}) above target ({target})")
        elif name not in MAX_TARGETS and value < target:
            failures.append(f"{name} ({value:.3f}) below target ({target})")
    return ThresholdCheck(passed=not failures, failures=tuple(failures), targets=targets)


def score_distribution(scores: Iterable[float]) -> dict[str, int]:
    buckets = Counter()
    for score in scores:
        if score >= 23:
            buckets["excellent (23-25)"] += 1
        elif score >= 18:
            buckets["good (18-22)"] += 1
        elif score >= 13:
            buckets["acceptable (13-17)"] += 1
        elif score >= 8:
            buckets["poor (8-12)"] += 1
        else:
            buckets["failing (0-7)"] += 1
    order = ("excellent (23-25)", "good (18-22)", "acceptable (13-17)", "poor (8-12)", "failing (0-7)")
    return {name: buckets.get(name, 0) for name in order}
