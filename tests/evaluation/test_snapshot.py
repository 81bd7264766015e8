"""Tests for snapshot persistence and regression comparison."""
import json

import pytest

from vcp.evaluation import Verdict, compare_snapshots, load_snapshot, write_snapshot
from vcp.evaluation.report import render_comparison
from vcp.evaluation.snapshot import snapshot_filename


def snapshot(avg_score, scores, errors=None, metrics=None):
    errors = errors or {}
    return {
        "timestamp": "2026-10-17T12:00:00+00:00",
        "promptCount": len(scores),
        "results": [
            {"promptId": pid, "input": f"prompt {pid}", "rubric": {"totalScore": score}, "error": errors.get(pid)}
            for pid, score in scores.items()
        ],
        "summary": {"avgScore": avg_score, "avgSpanCount": 4.0, "metrics": metrics or {}},
    }


class TestVerdict:
    """Tests for compare_snapshots() verdicts."""

    def test_prompt_regression_blocks_deploy(self):
        comp = compare_snapshots(snapshot(19.32, {"a": 20.0, "b": 18.64}), snapshot(18.0, {"a": 16.0, "b": 20.0}))
        assert comp.score_delta == -1.32
        assert [r.prompt_id for r in comp.regressions] == ["a"]
        assert comp.regressions[0].delta == -4.0
        assert comp.verdict is Verdict.REGRESSIONS
        assert comp.verdict.blocks_deploy

    def test_identical_is_safe(self):
        base = snapshot(19.0, {"a": 19.0})
        comp = compare_snapshots(base, base)
        assert comp.verdict is Verdict.SAFE
        assert not comp.verdict.blocks_deploy

    def test_new_error(self):
        comp = compare_snapshots(snapshot(19.0, {"a": 19.0}),
                                 snapshot(19.0, {"a": 19.0}, errors={"a": "open_vocab: rate_limited"}))
        assert comp.new_errors == ["a: open_vocab: rate_limited"]
        assert comp.verdict is Verdict.NEW_ERRORS

    def test_fixed_error(self):
        comp = compare_snapshots(snapshot(19.0, {"a": 19.0}, errors={"a": "boom"}), snapshot(19.0, {"a": 19.0}))
        assert comp.fixed_errors == ["a"]

    def test_average_drop_without_prompt_regression(self):
        comp = compare_snapshots(snapshot(20.0, {"a": 20.0, "b": 20.0}), snapshot(19.0, {"a": 18.0, "b": 20.0}))
        assert comp.verdict is Verdict.SCORE_DECREASED

    def test_small_drop_is_minor(self):
        comp = compare_snapshots(snapshot(20.0, {"a": 20.0}), snapshot(19.8, {"a": 19.8}))
        assert comp.verdict is Verdict.MINOR
        assert not comp.verdict.blocks_deploy

    def test_improvement_and_metric_delta(self):
        comp = compare_snapshots(
            snapshot(15.0, {"a": 15.0}, metrics={"relaxedF1": 0.8}),
            snapshot(19.0, {"a": 19.0}, metrics={"relaxedF1": 0.9}),
        )
        assert [i.prompt_id for i in comp.improvements] == ["a"]
        assert comp.metric_deltas["relaxedF1"] == 0.1

    def test_report_mentions_regression(self):
        comp = compare_snapshots(snapshot(19.32, {"a": 20.0}), snapshot(18.0, {"a": 16.0}))
        report = render_comparison(comp)
        assert "REGRESSIONS DETECTED" in report
        assert "prompt a" in report


class TestPersistence:
    """Tests for write_snapshot() and load_snapshot()."""

    def test_write_latest_and_baseline(self, tmp_path):
        snap = snapshot(19.0, {"a": 19.0})
        path = write_snapshot(snap, tmp_path, lock_baseline=True)
        assert path.name == "2026-10-17T12-00-00Z.json"
        assert json.loads((tmp_path / "latest.json").read_text()) == snap
        assert load_snapshot(tmp_path / "baseline.json") == snap

    def test_without_baseline(self, tmp_path):
        write_snapshot(snapshot(19.0, {"a": 19.0}), tmp_path)
        assert not (tmp_path / "baseline.json").exists()

    def test_missing_snapshot(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_snapshot(tmp_path / "baseline.json")

    def test_filename(self):
        assert snapshot_filename("2026-10-17T12:00:00.123456+00:00") == "2026-10-17T12-00-00.123456Z.json"
