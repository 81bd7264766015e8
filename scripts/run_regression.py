"""Run the golden set directly and gate on the locked baseline.

Also proves the harness can see regressions: the same run is repeated with
fragment and over-extraction faults injected, and both metrics must move.

Usage:
    python scripts/run_regression.py [--model none] [--labels labels.json]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
GOLDEN_DIR = PROJECT_ROOT / "data" / "golden"
SNAPSHOT_DIR = PROJECT_ROOT / "snapshots"

from vcp.evaluation import (
    FaultFlags,
    build_snapshot,
    compare_snapshots,
    load_golden_set,
    load_snapshot,
    run_evaluation,
)
from vcp.evaluation.report import render_comparison
from vcp.extraction.open_vocab import create_extractor


async def _evaluate(golden, extractor, faults: FaultFlags) -> dict:
    results = await run_evaluation(golden, extractor=extractor, delay_s=0.0, faults=faults)
    return build_snapshot(results, source_file=golden.source_label, extractor_name=extractor.name)


def main() -> int:
    parser = argparse.ArgumentParser(description="Golden-set regression gate.")
    parser.add_argument("--model", default="none")
    parser.add_argument("--labels", type=Path, default=None)
    args = parser.parse_args()

    golden = load_golden_set(GOLDEN_DIR)
    extractor = create_extractor(args.model, labels_path=args.labels)
    print(f"=== {len(golden)} prompts, extractor={extractor.name} ===", flush=True)

    clean = asyncio.run(_evaluate(golden, extractor, FaultFlags()))
    faulty = asyncio.run(_evaluate(golden, extractor, FaultFlags(fragment=True, overextract=True)))

    clean_m, faulty_m = clean["summary"]["metrics"], faulty["summary"]["metrics"]
    failed = False
    for name in ("fragmentationRate", "overExtractionRate"):
        moved = faulty_m[name] > clean_m[name]
        print(f"  fault {name}: {clean_m[name]:.3f} -> {faulty_m[name]:.3f} {'OK' if moved else 'UNDETECTED'}")
        failed |= not moved

    baseline_path = SNAPSHOT_DIR / "baseline.json"
    if baseline_path.exists():
        comparison = compare_snapshots(load_snapshot(baseline_path), clean)
        print(render_comparison(comparison))
        failed |= comparison.verdict.blocks_deploy
    else:
        print(f"No baseline at {baseline_path}; run `vcp-eval run --baseline` to lock one.")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
