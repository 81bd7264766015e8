"""Snapshot persistence and baseline/current regression comparison."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from vcp.extraction.taxonomy import Parent

from .metrics import RUBRIC_CATEGORIES, SECTION_NAMES, TARGETS

logger = logging.getLogger(__name__)

REGRESSION_DELTA = -3.0
IMPROVEMENT_DELTA = 3.0
SCORE_DECREASE_TOLERANCE = -0.5
GRANULARITY_REASONS = ("too_fine", "too_coarse", "other")
COMPARED_METRICS = tuple(TARGETS) + ("precision", "recall", "preRepairFragmentationRate", "p95LatencyMs")


class Verdict(str, Enum):
    SAFE = "NO REGRESSIONS DETECTED - SAFE TO DEPLOY"
    REGRESSIONS = "REGRESSIONS DETECTED"
    NEW_ERRORS = "NEW ERRORS"
    SCORE_DECREASED = "AVERAGE SCORE DECREASED"
    MINOR = "MINOR CHANGES"

    @property
    def blocks_deploy(self) -> bool:
        return self in (Verdict.REGRESSIONS, Verdict.NEW_ERRORS, Verdict.SCORE_DECREASED)


@dataclass(frozen=True)
class PromptDelta:
    prompt_id: str
    input: str
    baseline_score: float
    current_score: float

    @property
    def delta(self) -> float:
        return round(self.current_score - self.baseline_score, 2)


@dataclass
class Comparison:
    baseline: dict[str, Any]
    current: dict[str, Any]
    score_delta: float
    span_count_delta: float
    regressions: list[PromptDelta] = field(default_factory=list)
    improvements: list[PromptDelta] = field(default_factory=list)
    new_errors: list[str] = field(default_factory=list)
    fixed_errors: list[str] = field(default_factory=list)
    metric_deltas: dict[str, float] = field(default_factory=dict)
    rubric_deltas: dict[str, float] = field(default_factory=dict)
    category_score_deltas: dict[str, dict[str, float]] = field(default_factory=dict)
    corpus_deltas: dict[str, dict[str, float]] = field(default_factory=dict)
    section_error_rate_deltas: dict[str, dict[str, float]] = field(default_factory=dict)
    new_taxonomy_confusions: list[dict[str, Any]] = field(default_factory=list)
    resolved_taxonomy_confusions: list[dict[str, Any]] = field(default_factory=list)
    granularity_deltas: dict[str, int] = field(default_factory=dict)
    new_granularity_issues: list[dict[str, Any]] = field(default_factory=list)
    resolved_granularity_issues: list[dict[str, Any]] = field(default_factory=list)

    @property
    def verdict(self) -> Verdict:
        if self.score_delta >= 0 and not self.regressions and not self.new_errors:
            return Verdict.SAFE
        if self.regressions:
            return Verdict.REGRESSIONS
        if self.new_errors:
            return Verdict.NEW_ERRORS
        if self.score_delta < SCORE_DECREASE_TOLERANCE:
            return Verdict.SCORE_DECREASED
        return Verdict.MINOR


def load_snapshot(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def snapshot_filename(timestamp: str) -> str:
    return timestamp.replace(":", "-").replace("+00-00", "Z") + ".json"


def write_snapshot(snapshot: dict[str, Any], directory: str | Path, *, lock_baseline: bool = False) -> Path:
    """Write ``<timestamp>.json`` and ``latest.json`` (and ``baseline.json``).

    Returns the path of the timestamped file.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(snapshot, indent=2, ensure_ascii=False)
    path = directory / snapshot_filename(snapshot["timestamp"])
    path.write_text(payload, encoding="utf-8")
    (directory / "latest.json").write_text(payload, encoding="utf-8")
    if lock_baseline:
        (directory / "baseline.json").write_text(payload, encoding="utf-8")
        logger.info("Baseline locked at %s", directory / "baseline.json")
    return path


def normalize_snapshot(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Fill summary fields that older snapshots may lack."""
    summary = dict(snapshot.get("summary") or {})
    summary.setdefault("avgScore", 0.0)
    summary.setdefault("avgSpanCount", 0.0)
    summary.setdefault("categoryScores", {p.value: {"coverage": 0.0, "precision": 0.0} for p in Parent})
    summary.setdefault("errorsBySection", {s: {"falsePositives": 0, "missed": 0} for s in SECTION_NAMES})
    summary.setdefault("metrics", {})
    summary.setdefault("corpora", {})
    summary.setdefault("topTaxonomyErrors", [])
    summary.setdefault("topGranularityErrors", [])
    return {**snapshot, "results": list(snapshot.get("results") or []), "summary": summary}


def _total_score(result: dict[str, Any]) -> float:
    return float((result.get("rubric") or {}).get("totalScore") or 0.0)


def _section_rates(snapshot: dict[str, Any]) -> dict[str, dict[str, float]]:
    count = snapshot.get("promptCount") or 0
    counts = snapshot["summary"]["errorsBySection"]
    return {
        section: {
            key: (counts.get(section, {}).get(key, 0) / count if count else 0.0)
            for key in ("falsePositives", "missed")
        }
        for section in SECTION_NAMES
    }


def _confusion_keys(snapshot: dict[str, Any]) -> dict[tuple[str, str], dict[str, Any]]:
    return {(c["assignedRole"], c["expectedRole"]): c for c in snapshot["summary"]["topTaxonomyErrors"]}


def _granularity_map(snapshot: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {g["reason"]: g for g in snapshot["summary"]["topGranularityErrors"]}


def compare_snapshots(baseline: dict[str, Any], current: dict[str, Any]) -> Comparison:
    baseline = normalize_snapshot(baseline)
    current = normalize_snapshot(current)
    base_summary, curr_summary = baseline["summary"], current["summary"]

    comp = Comparison(
        baseline=baseline,
        current=current,
        score_delta=round(curr_summary["avgScore"] - base_summary["avgScore"], 2),
        span_count_delta=round(curr_summary["avgSpanCount"] - base_summary["avgSpanCount"], 2),
    )

    base_results = {r["promptId"]: r for r in baseline["results"]}
    curr_results = {r["promptId"]: r for r in current["results"]}
    shared = [pid for pid in base_results if pid in curr_results]

    for pid in shared:
        base, curr = base_results[pid], curr_results[pid]
        delta = PromptDelta(pid, base.get("input", ""), _total_score(base), _total_score(curr))
        if delta.delta <= REGRESSION_DELTA:
            comp.regressions.append(delta)
        elif delta.delta >= IMPROVEMENT_DELTA:
            comp.improvements.append(delta)
        if not base.get("error") and curr.get("error"):
            comp.new_errors.append(f"{pid}: {curr['error']}")
        elif base.get("error") and not curr.get("error"):
            comp.fixed_errors.append(pid)
    comp.regressions.sort(key=lambda d: d.delta)
    comp.improvements.sort(key=lambda d: -d.delta)

    for name in RUBRIC_CATEGORIES:
        base_sum = curr_sum = 0.0
        count = 0
        for pid in shared:
            b = float(((base_results[pid].get("rubric") or {}).get("scores") or {}).get(name, 0.0))
            c = float(((curr_results[pid].get("rubric") or {}).get("scores") or {}).get(name, 0.0))
            if b > 0 or c > 0:
                base_sum += b
                curr_sum += c
                count += 1
        if count:
            comp.rubric_deltas[name] = round((curr_sum - base_sum) / count, 3)

    for name in COMPARED_METRICS:
        b, c = base_summary["metrics"].get(name), curr_summary["metrics"].get(name)
        if isinstance(b, (int, float)) and isinstance(c, (int, float)):
            comp.metric_deltas[name] = round(c - b, 4)

    for parent in Parent:
        b = base_summary["categoryScores"].get(parent.value, {})
        c = curr_summary["categoryScores"].get(parent.value, {})
        comp.category_score_deltas[parent.value] = {
            key: round(c.get(key, 0.0) - b.get(key, 0.0), 2) for key in ("coverage", "precision")
        }

    for corpus in dict.fromkeys([*base_summary["corpora"], *curr_summary["corpora"]]):
        b = base_summary["corpora"].get(corpus, {})
        c = curr_summary["corpora"].get(corpus, {})
        comp.corpus_deltas[corpus] = {
            key: round(c.get(key, 0.0) - b.get(key, 0.0), 4) for key in ("avgScore", "relaxedF1")
        }

    base_rates, curr_rates = _section_rates(baseline), _section_rates(current)
    comp.section_error_rate_deltas = {
        section: {
            key: round(curr_rates[section][key] - base_rates[section][key], 3)
            for key in ("falsePositives", "missed")
        }
        for section in SECTION_NAMES
    }

    base_conf, curr_conf = _confusion_keys(baseline), _confusion_keys(current)
    comp.new_taxonomy_confusions = sorted(
        (v for k, v in curr_conf.items() if k not in base_conf), key=lambda v: -v["count"],
    )
    comp.resolved_taxonomy_confusions = sorted(
        (v for k, v in base_conf.items() if k not in curr_conf), key=lambda v: -v["count"],
    )

    base_gran, curr_gran = _granularity_map(baseline), _granularity_map(current)
    comp.granularity_deltas = {
        reason: curr_gran.get(reason, {}).get("count", 0) - base_gran.get(reason, {}).get("count", 0)
        for reason in GRANULARITY_REASONS
    }
    comp.new_granularity_issues = sorted(
        (v for k, v in curr_gran.items() if k not in base_gran), key=lambda v: -v["count"],
    )
    comp.resolved_granularity_issues = sorted(
        (v for k, v in base_gran.items() if k not in curr_gran), key=lambda v: -v["count"],
    )
    return comp
