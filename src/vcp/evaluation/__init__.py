"""Golden-set evaluation harness: loader, metrics, runner, snapshots."""
from .golden import GoldenPrompt, GoldenSet, GoldenSpan, load_golden_set
from .metrics import (
    TARGETS,
    EvalSpan,
    EvaluationResult,
    ThresholdCheck,
    aggregate,
    check_thresholds,
    evaluate_spans,
    iou,
)
from .runner import FaultFlags, build_snapshot, evaluate_prompt, run_evaluation
from .snapshot import Comparison, Verdict, compare_snapshots, load_snapshot, write_snapshot

__all__ = [
    # Golden set
    "GoldenSpan",
    "GoldenPrompt",
    "GoldenSet",
    "load_golden_set",
    # Metrics
    "EvalSpan",
    "EvaluationResult",
    "ThresholdCheck",
    "TARGETS",
    "iou",
    "evaluate_spans",
    "aggregate",
    "check_thresholds",
    # Runner
    "FaultFlags",
    "evaluate_prompt",
    "run_evaluation",
    "build_snapshot",
    # Snapshots
    "Comparison",
    "Verdict",
    "compare_snapshots",
    "load_snapshot",
    "write_snapshot",
]
