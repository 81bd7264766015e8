"""Golden-set evaluation CLI.

Usage:
    vcp-eval run --model none --baseline
    vcp-eval run --labels fixtures/labels.json --report report.md
    vcp-eval compare --baseline snapshots/baseline.json --current snapshots/latest.json
    vcp-eval validate --golden-dir data/golden

Exit codes:
    0  success / safe to deploy
    1  targets missed, blocking regression, or missing snapshot
    2  golden set failed integrity validation

Fault injection (proves the harness catches regressions):
    VCP_EVAL_FAULT_SPAN_FRAGMENT=1    split every long predicted span in two
    VCP_EVAL_FAULT_SPAN_OVEREXTRACT=1 append one-character junk spans
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from vcp.config import parse_env
from vcp.errors import GoldenSetIntegrityError
from vcp.extraction.open_vocab import create_extractor
from vcp.extraction.types import LabelingPolicy
from vcp.shared.logger import RunLogger

from .golden import load_golden_set
from .metrics import check_thresholds
from .report import render_comparison, render_evaluation_report
from .runner import FaultFlags, build_snapshot, run_evaluation
from .snapshot import compare_snapshots, load_snapshot, write_snapshot

EXIT_FAILED = 1
EXIT_INTEGRITY = 2


@click.group()
def main() -> None:
    """Evaluate span labeling against the golden set."""


@main.command()
@click.option("--golden-dir", type=click.Path(path_type=Path), default=None,
              help="Golden-set directory (default: VCP_GOLDEN_DIR)")
@click.option("--snapshot-dir", type=click.Path(path_type=Path), default=None,
              help="Snapshot output directory (default: VCP_SNAPSHOT_DIR)")
@click.option("--model", default=None, help="LLM model, or 'none' for deterministic-only")
@click.option("--labels", "labels_path", type=click.Path(exists=True, path_type=Path), default=None,
              help="Replay fixed labels from a JSON table instead of calling a model")
@click.option("--delay-ms", type=int, default=None, help="Pause between prompts")
@click.option("--baseline", "lock_baseline", is_flag=True, help="Also write baseline.json")
@click.option("--report", "report_path", type=click.Path(path_type=Path), default=None,
              help="Write the Markdown report here")
@click.option("--log-file", type=click.Path(path_type=Path), default=None,
              help="INFO+ log file (readable summary)")
@click.option("--trace-file", type=click.Path(path_type=Path), default=None,
              help="TRACE+ log file (full detail, every prompt)")
def run(
    golden_dir: Path | None,
    snapshot_dir: Path | None,
    model: str | None,
    labels_path: Path | None,
    delay_ms: int | None,
    lock_baseline: bool,
    report_path: Path | None,
    log_file: Path | None,
    trace_file: Path | None,
) -> None:
    """Run the pipeline over every golden prompt and write a snapshot."""
    env = parse_env()
    golden_dir = golden_dir or env["golden_dir"]
    snapshot_dir = snapshot_dir or env["snapshot_dir"]
    delay_ms = env["eval_delay_ms"] if delay_ms is None else delay_ms

    log = RunLogger(log_file=log_file, trace_file=trace_file, title="Golden set evaluation")
    log.attach_stdlib("vcp", logging.INFO)
    try:
        log.section("Golden Set Evaluation")
        try:
            golden = load_golden_set(golden_dir)
        except GoldenSetIntegrityError as e:
            log.error(f"Golden set integrity check failed: {e}")
            sys.exit(EXIT_INTEGRITY)
        log.info(f"Loaded {len(golden)} prompts from {golden.source_label}")

        extractor = create_extractor(
            model if model is not None else env["llm_model"],
            labels_path=labels_path,
            chunk_chars=env["chunk_chars"],
        )
        log.info(f"Extractor: {extractor.name}")
        faults = FaultFlags.from_env()

        with log.timer("evaluation"):
            results = asyncio.run(run_evaluation(
                golden,
                extractor=extractor,
                policy=LabelingPolicy.from_config(env),
                delay_s=delay_ms / 1000,
                faults=faults,
                log=log,
            ))

        snapshot = build_snapshot(results, source_file=golden.source_label, extractor_name=extractor.name)
        path = write_snapshot(snapshot, snapshot_dir, lock_baseline=lock_baseline)
        log.info(f"Snapshot written to {path}")

        metrics = snapshot["summary"]["metrics"]
        for name in ("relaxedF1", "taxonomyAccuracy", "jsonValidityRate", "safetyPassRate",
                     "fragmentationRate", "overExtractionRate"):
            log.metric(name, metrics[name])
        log.metric("avgScore", snapshot["summary"]["avgScore"], "/25")
        log.metric("p95Latency", metrics["p95LatencyMs"], "ms")

        check = check_thresholds(metrics)
        report = render_evaluation_report(snapshot, check)
        if report_path is not None:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(report, encoding="utf-8")
            log.info(f"Report written to {report_path}")
        else:
            click.echo(report)

        log.summary()
        if not check.passed:
            for failure in check.failures:
                log.warn(f"Target missed: {failure}")
            sys.exit(EXIT_FAILED)
    finally:
        log.close()


@main.command()
@click.option("--baseline", "baseline_path", type=click.Path(path_type=Path), default=None,
              help="Baseline snapshot (default: <snapshot-dir>/baseline.json)")
@click.option("--current", "current_path", type=click.Path(path_type=Path), default=None,
              help="Current snapshot (default: <snapshot-dir>/latest.json)")
@click.option("--snapshot-dir", type=click.Path(path_type=Path), default=None)
@click.option("--report", "report_path", type=click.Path(path_type=Path), default=None,
              help="Also write the Markdown report here")
def compare(
    baseline_path: Path | None,
    current_path: Path | None,
    snapshot_dir: Path | None,
    report_path: Path | None,
) -> None:
    """Compare two snapshots and fail on a blocking regression."""
    snapshot_dir = snapshot_dir or parse_env()["snapshot_dir"]
    baseline_path = baseline_path or snapshot_dir / "baseline.json"
    current_path = current_path or snapshot_dir / "latest.json"

    try:
        baseline = load_snapshot(baseline_path)
        current = load_snapshot(current_path)
    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo("Run `vcp-eval run --baseline` first to create one.", err=True)
        sys.exit(EXIT_FAILED)

    comparison = compare_snapshots(baseline, current)
    report = render_comparison(comparison)
    click.echo(report)
    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report, encoding="utf-8")

    if comparison.verdict.blocks_deploy:
        sys.exit(EXIT_FAILED)


@main.command()
@click.option("--golden-dir", type=click.Path(path_type=Path), default=None)
def validate(golden_dir: Path | None) -> None:
    """Check golden-set integrity without calling any model."""
    try:
        golden = load_golden_set(golden_dir or parse_env()["golden_dir"])
    except GoldenSetIntegrityError as e:
        click.echo(f"Golden set integrity check failed: {e}", err=True)
        sys.exit(EXIT_INTEGRITY)
    for corpus, prompts in golden.by_corpus().items():
        spans = sum(len(p.spans) for p in prompts)
        click.echo(f"{corpus:<16}{len(prompts):>4} prompts {spans:>5} spans")
    click.echo(f"OK: {len(golden)} prompts")


if __name__ == "__main__":
    main()
