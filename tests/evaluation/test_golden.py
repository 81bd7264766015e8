"""Tests for the golden-set loader and its integrity checks."""
import json
from pathlib import Path

import pytest

from vcp.errors import GoldenSetIntegrityError
from vcp.evaluation import load_golden_set

GOLDEN_DIR = Path(__file__).resolve().parents[2] / "data" / "golden"


def write_corpus(directory, name, prompts):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(json.dumps({"prompts": prompts}), encoding="utf-8")


def prompt(text, spans, prompt_id="p1"):
    return {"id": prompt_id, "text": text, "groundTruth": {"spans": spans}}


class TestShippedGoldenSet:
    """The checked-in golden set must always load."""

    def test_loads(self):
        golden = load_golden_set(GOLDEN_DIR)
        assert len(golden) >= 20
        assert list(golden.by_corpus()) == ["core", "technical", "adversarial", "edge-cases"]
        assert all(p.is_adversarial for p in golden.by_corpus()["adversarial"])

    def test_offsets_slice_back(self):
        for p in load_golden_set(GOLDEN_DIR):
            for span in p.spans:
                assert p.text[span.start:span.end] == span.text


class TestIntegrity:
    """Tests for integrity violations."""

    def test_located_span(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [prompt("A red desert", [{"text": "red desert", "role": "location"}])])
        span = load_golden_set(tmp_path).prompts[0].spans[0]
        assert (span.start, span.end, span.role) == (2, 12, "environment.location")

    def test_ambiguous_text_needs_occurrence(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [prompt("rain, more rain", [{"text": "rain", "role": "environment.weather"}])])
        with pytest.raises(GoldenSetIntegrityError, match="ambiguous"):
            load_golden_set(tmp_path)

    def test_occurrence_picks_match(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [
            prompt("rain, more rain", [{"text": "rain", "role": "environment.weather", "occurrence": 1}]),
        ])
        assert load_golden_set(tmp_path).prompts[0].spans[0].start == 11

    def test_occurrence_out_of_range(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [
            prompt("rain, more rain", [{"text": "rain", "role": "environment.weather", "occurrence": 2}]),
        ])
        with pytest.raises(GoldenSetIntegrityError, match="out of range"):
            load_golden_set(tmp_path)

    def test_offset_mismatch(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [
            prompt("A red desert", [{"text": "red desert", "role": "location", "start": 0, "end": 10}]),
        ])
        with pytest.raises(GoldenSetIntegrityError, match="mismatch") as exc_info:
            load_golden_set(tmp_path)
        assert exc_info.value.prompt_id == "p1"
        assert exc_info.value.source_file == "core-prompts.json"

    def test_text_not_found(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [prompt("A red desert", [{"text": "ocean", "role": "location"}])])
        with pytest.raises(GoldenSetIntegrityError, match="not found"):
            load_golden_set(tmp_path)

    def test_unknown_role(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [prompt("A red desert", [{"text": "red desert", "role": "vibes"}])])
        with pytest.raises(GoldenSetIntegrityError, match="unknown role"):
            load_golden_set(tmp_path)

    def test_non_canonical_text(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [prompt("Cafe\u0301 at dusk", [])])
        with pytest.raises(GoldenSetIntegrityError, match="canonical"):
            load_golden_set(tmp_path)

    def test_duplicate_ids(self, tmp_path):
        write_corpus(tmp_path, "core-prompts.json", [prompt("A red desert", [])])
        write_corpus(tmp_path, "edge-cases.json", [prompt("A blue ocean", [])])
        with pytest.raises(GoldenSetIntegrityError, match="duplicate"):
            load_golden_set(tmp_path)

    def test_invalid_json(self, tmp_path):
        (tmp_path / "core-prompts.json").write_text("{", encoding="utf-8")
        with pytest.raises(GoldenSetIntegrityError, match="invalid JSON"):
            load_golden_set(tmp_path)

    def test_missing_or_empty_directory(self, tmp_path):
        with pytest.raises(GoldenSetIntegrityError):
            load_golden_set(tmp_path / "absent")
        with pytest.raises(GoldenSetIntegrityError):
            load_golden_set(tmp_path)

    def test_file_order(self, tmp_path):
        write_corpus(tmp_path, "zz-extra.json", [prompt("A red desert", [], "z1")])
        write_corpus(tmp_path, "edge-cases.json", [prompt("A red desert", [], "e1")])
        write_corpus(tmp_path, "core-prompts.json", [prompt("A red desert", [], "c1")])
        golden = load_golden_set(tmp_path)
        assert golden.files == ("core-prompts.json", "edge-cases.json", "zz-extra.json")
        assert [p.corpus for p in golden] == ["core", "edge-cases", "zz-extra"]
