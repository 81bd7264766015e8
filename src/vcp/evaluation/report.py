"""Markdown rendering for evaluation runs and snapshot comparisons."""

from __future__ import annotations

from typing import Any

from .metrics import MISSED, SPURIOUS, ThresholdCheck
from .snapshot import Comparison


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def _signed(value: float, digits: int = 3) -> str:
    return f"{value:+.{digits}f}"


def render_evaluation_report(snapshot: dict[str, Any], check: ThresholdCheck) -> str:
    summary = snapshot["summary"]
    metrics = summary["metrics"]
    lines = [
        "# Golden Set Evaluation Report",
        "",
        f"- Timestamp: {snapshot['timestamp']}",
        f"- Prompts: {snapshot['promptCount']} ({snapshot['sourceFile']})",
        f"- Extractor: {snapshot.get('extractor') or 'n/a'}",
        "",
        "## Metrics",
        "",
        "| Metric | Value | Target |",
        "|---|---|---|",
        f"| JSON validity | {_pct(metrics['jsonValidityRate'])} | >= {_pct(check.targets['jsonValidityRate'])} |",
        f"| Relaxed F1 | {metrics['relaxedF1']:.3f} | >= {check.targets['relaxedF1']} |",
        f"| Precision | {metrics['precision']:.3f} | |",
        f"| Recall | {metrics['recall']:.3f} | |",
        f"| Taxonomy accuracy | {_pct(metrics['taxonomyAccuracy'])} | >= {_pct(check.targets['taxonomyAccuracy'])} |",
        f"| Safety pass rate | {_pct(metrics['safetyPassRate'])} | >= {_pct(check.targets['safetyPassRate'])} |",
        f"| Fragmentation | {_pct(metrics['fragmentationRate'])} | <= {_pct(check.targets['fragmentationRate'])} |",
        f"| Fragmentation before repair | {_pct(metrics['preRepairFragmentationRate'])} | |",
        f"| Over-extraction | {_pct(metrics['overExtractionRate'])} | <= {_pct(check.targets['overExtractionRate'])} |",
        f"| Avg latency | {metrics['avgLatencyMs']:.0f} ms | |",
        f"| P95 latency | {metrics['p95LatencyMs']:.0f} ms | |",
        "",
        f"Average rubric score: **{summary['avgScore']:.2f}/25** "
        f"over {metrics['successfulTests']}/{metrics['totalTests']} successful prompts.",
        "",
    ]

    if summary["corpora"]:
        lines += ["## By corpus", "", "| Corpus | Prompts | Avg score | Relaxed F1 |", "|---|---|---|---|"]
        for name, c in summary["corpora"].items():
            lines.append(f"| {name} | {c['promptCount']} | {c['avgScore']:.2f} | {c['relaxedF1']:.3f} |")
        lines.append("")

    if metrics["byCategory"]:
        lines += ["## By category (worst first)", "", "| Category | F1 | P | R | n |", "|---|---|---|---|---|"]
        for role, m in sorted(metrics["byCategory"].items(), key=lambda kv: kv[1]["f1"]):
            lines.append(f"| {role} | {m['f1']:.3f} | {m['precision']:.3f} | {m['recall']:.3f} | {m['support']} |")
        lines.append("")

    confusions = [
        (gt, pred, count)
        for gt, row in metrics["confusionMatrix"].items()
        if gt != SPURIOUS
        for pred, count in row.items()
        if pred not in (gt, MISSED)
    ]
    if confusions:
        lines += ["## Top confusions", ""]
        for gt, pred, count in sorted(confusions, key=lambda c: -c[2])[:10]:
            lines.append(f"- {gt} -> {pred}: {count}")
        lines.append("")

    if check.passed:
        lines.append("**ALL TARGETS MET - READY FOR DEPLOYMENT**")
    else:
        lines += ["**SOME TARGETS FAILED - DEPLOYMENT BLOCKED**", ""]
        lines += [f"- {failure}" for failure in check.failures]
    lines.append("")
    return "\n".join(lines)


def render_comparison(comp: Comparison) -> str:
    base, curr = comp.baseline, comp.current
    lines = [
        "# Span Labeling Regression Report",
        "",
        f"- Baseline: {base.get('timestamp')} ({base.get('promptCount', 0)} prompts)",
        f"- Current: {curr.get('timestamp')} ({curr.get('promptCount', 0)} prompts)",
        "",
        "## Overall",
        "",
        f"- Average score: {base['summary']['avgScore']:.2f} -> {curr['summary']['avgScore']:.2f} "
        f"({_signed(comp.score_delta, 2)})",
        f"- Average span count: {base['summary']['avgSpanCount']:.2f} -> {curr['summary']['avgSpanCount']:.2f} "
        f"({_signed(comp.span_count_delta, 2)})",
        "",
    ]

    if comp.metric_deltas:
        lines += ["## Metrics", ""]
        lines += [f"- {name}: {_signed(delta, 4)}" for name, delta in comp.metric_deltas.items()]
        lines.append("")

    if comp.rubric_deltas:
        lines += ["## By rubric", ""]
        lines += [f"- {name}: {_signed(delta)}" for name, delta in comp.rubric_deltas.items()]
        lines.append("")

    lines += ["## Category score change (coverage / precision)", ""]
    for name, delta in comp.category_score_deltas.items():
        lines.append(f"- {name}: cov {_signed(delta['coverage'], 2)} prec {_signed(delta['precision'], 2)}")
    lines.append("")

    if comp.corpus_deltas:
        lines += ["## Corpus change", ""]
        for name, delta in comp.corpus_deltas.items():
            lines.append(f"- {name}: score {_signed(delta['avgScore'], 2)} F1 {_signed(delta['relaxedF1'])}")
        lines.append("")

    lines += ["## Section error rate change (per prompt)", ""]
    for name, delta in comp.section_error_rate_deltas.items():
        lines.append(f"- {name}: FP {_signed(delta['falsePositives'])} missed {_signed(delta['missed'])}")
    lines.append("")

    for title, items in (
        ("New taxonomy confusions", comp.new_taxonomy_confusions),
        ("Resolved taxonomy confusions", comp.resolved_taxonomy_confusions),
    ):
        if items:
            lines += [f"## {title}", ""]
            lines += [f"- {c['assignedRole']} -> {c['expectedRole']} ({c['count']}x)" for c in items[:5]]
            lines.append("")

    changed = {k: v for k, v in comp.granularity_deltas.items() if v}
    if changed:
        lines += ["## Granularity issue change", ""]
        lines += [f"- {reason}: {delta:+d}" for reason, delta in changed.items()]
        lines.append("")

    for title, items in (
        ("New granularity issues", comp.new_granularity_issues),
        ("Resolved granularity issues", comp.resolved_granularity_issues),
    ):
        if items:
            lines += [f"## {title}", ""]
            for item in items:
                example = f' (e.g. "{item["examples"][0]}")' if item.get("examples") else ""
                lines.append(f"- {item['reason']}: {item['count']}x{example}")
            lines.append("")

    if comp.regressions:
        lines += [f"## Regressions ({len(comp.regressions)} prompts worse by 3+ points)", ""]
        for r in comp.regressions[:5]:
            lines.append(f"- [{r.baseline_score} -> {r.current_score}] {r.prompt_id}: \"{r.input[:50]}\"")
        if len(comp.regressions) > 5:
            lines.append(f"- ... and {len(comp.regressions) - 5} more")
        lines.append("")

    if comp.improvements:
        lines += [f"## Improvements ({len(comp.improvements)} prompts better by 3+ points)", ""]
        for r in comp.improvements[:5]:
            lines.append(f"- [{r.baseline_score} -> {r.current_score}] {r.prompt_id}: \"{r.input[:50]}\"")
        lines.append("")

    if comp.new_errors:
        lines += [f"## New errors ({len(comp.new_errors)})", ""]
        lines += [f"- {e[:80]}" for e in comp.new_errors[:3]]
        lines.append("")

    if comp.fixed_errors:
        lines += [f"## Fixed errors ({len(comp.fixed_errors)})", ""]
        lines += [f"- {e}" for e in comp.fixed_errors[:3]]
        lines.append("")

    verdict = comp.verdict
    suffix = " - REVIEW BEFORE DEPLOY" if verdict.blocks_deploy else ""
    count = len(comp.regressions) if verdict.name == "REGRESSIONS" else len(comp.new_errors)
    prefix = f"{count} " if verdict.name in ("REGRESSIONS", "NEW_ERRORS") else ""
    lines += ["## Verdict", "", f"**{prefix}{verdict.value}{suffix}**", ""]
    return "\n".join(lines)
