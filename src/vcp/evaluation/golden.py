"""Golden-set loader.

Every ``*.json`` file in the golden directory is one corpus::

    {"prompts": [{"id": "...", "text": "...",
                  "groundTruth": {"spans": [{"text": "...", "role": "...",
                                             "start": 0, "end": 4,
                                             "occurrence": 1}]}}]}

Spans with explicit offsets must slice back to their text. Spans without
offsets are located in the prompt; text that occurs more than once needs an
``occurrence`` index. Any violation raises ``GoldenSetIntegrityError`` before
a single model call is made. A prompt with no ground-truth spans is an
adversarial case.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from vcp.errors import GoldenSetIntegrityError, UnknownCategoryError
from vcp.extraction.canonical import normalize
from vcp.extraction.taxonomy import resolve_category

logger = logging.getLogger(__name__)

DEFAULT_GOLDEN_DIR = Path("data/golden")

# Loaded first, in this order; any other corpus follows alphabetically.
PREFERRED_FILES = (
    "core-prompts.json",
    "technical-prompts.json",
    "adversarial-prompts.json",
    "edge-cases.json",
)


@dataclass(frozen=True)
class GoldenSpan:
    text: str
    role: str
    start: int
    end: int

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "role": self.role, "start": self.start, "end": self.end}


@dataclass(frozen=True)
class GoldenPrompt:
    id: str
    text: str
    spans: tuple[GoldenSpan, ...]
    corpus: str
    source_file: str

    @property
    def is_adversarial(self) -> bool:
        return not self.spans


@dataclass(frozen=True)
class GoldenSet:
    prompts: tuple[GoldenPrompt, ...]
    files: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.prompts)

    def __iter__(self):
        return iter(self.prompts)

    @property
    def source_label(self) -> str:
        return ",".join(self.files)

    def by_corpus(self) -> dict[str, list[GoldenPrompt]]:
        grouped: dict[str, list[GoldenPrompt]] = {}
        for prompt in self.prompts:
            grouped.setdefault(prompt.corpus, []).append(prompt)
        return grouped


def find_all_occurrences(haystack: str, needle: str) -> list[int]:
    """Start offsets of non-overlapping occurrences of *needle*."""
    if not needle:
        return []
    starts = []
    idx = haystack.find(needle)
    while idx != -1:
        starts.append(idx)
        idx = haystack.find(needle, idx + len(needle))
    return starts


def corpus_name(path: Path) -> str:
    stem = path.stem
    return stem[: -len("-prompts")] if stem.endswith("-prompts") else stem


def _resolve_span(raw: dict[str, Any], text: str, prompt_id: str, source: str) -> GoldenSpan:
    span_text = raw.get("text")
    if not isinstance(span_text, str) or not span_text:
        raise GoldenSetIntegrityError("span missing text", prompt_id=prompt_id, source_file=source)

    try:
        role = resolve_category(str(raw.get("role", "")), strict=True)
    except UnknownCategoryError as e:
        raise GoldenSetIntegrityError(
            f"span {span_text!r} has unknown role {raw.get('role')!r}", prompt_id=prompt_id, source_file=source,
        ) from e

    start, end = raw.get("start"), raw.get("end")
    if isinstance(start, int) and isinstance(end, int):
        sliced = text[start:end]
        if sliced != span_text:
            raise GoldenSetIntegrityError(
                f"span indices mismatch {span_text!r} start={start} end={end} slice={sliced!r}",
                prompt_id=prompt_id,
                source_file=source,
            )
        return GoldenSpan(span_text, role, start, end)

    matches = find_all_occurrences(text, span_text)
    if not matches:
        raise GoldenSetIntegrityError(
            f"span text not found {span_text!r}", prompt_id=prompt_id, source_file=source,
        )
    occurrence = raw.get("occurrence")
    if occurrence is None and len(matches) > 1:
        raise GoldenSetIntegrityError(
            f"span text is ambiguous (set \"occurrence\") {span_text!r} (matches={len(matches)})",
            prompt_id=prompt_id,
            source_file=source,
        )
    pick = 0 if occurrence is None else occurrence
    if not isinstance(pick, int) or not 0 <= pick < len(matches):
        raise GoldenSetIntegrityError(
            f"span occurrence out of range {span_text!r} occurrence={pick} (matches={len(matches)})",
            prompt_id=prompt_id,
            source_file=source,
        )
    start = matches[pick]
    return GoldenSpan(span_text, role, start, start + len(span_text))


def _parse_prompt(raw: dict[str, Any], corpus: str, source: str) -> GoldenPrompt:
    prompt_id = str(raw.get("id") or "<unknown>")
    text = raw.get("text")
    if not isinstance(text, str) or not text.strip():
        raise GoldenSetIntegrityError("prompt has no text", prompt_id=prompt_id, source_file=source)
    if normalize(text) != text:
        # offsets are compared against pipeline output on canonical text
        raise GoldenSetIntegrityError(
            "prompt text is not canonical (NFC, no invisible or control characters)",
            prompt_id=prompt_id,
            source_file=source,
        )

    raw_spans = (raw.get("groundTruth") or {}).get("spans") or []
    spans = tuple(
        sorted(
            (_resolve_span(s, text, prompt_id, source) for s in raw_spans),
            key=lambda s: (s.start, s.end),
        )
    )
    return GoldenPrompt(id=prompt_id, text=text, spans=spans, corpus=corpus, source_file=source)


def load_golden_file(path: str | Path) -> list[GoldenPrompt]:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise GoldenSetIntegrityError(f"invalid JSON: {e}", source_file=path.name) from e
    prompts = data.get("prompts") if isinstance(data, dict) else None
    if not isinstance(prompts, list):
        raise GoldenSetIntegrityError("expected an object with a 'prompts' list", source_file=path.name)
    corpus = corpus_name(path)
    return [_parse_prompt(p, corpus, path.name) for p in prompts]


def _ordered_files(directory: Path) -> list[Path]:
    files = {p.name: p for p in directory.glob("*.json")}
    ordered = [files.pop(name) for name in PREFERRED_FILES if name in files]
    ordered.extend(files[name] for name in sorted(files))
    return ordered


def load_golden_set(directory: str | Path | None = None) -> GoldenSet:
    """Load and validate every corpus in *directory*.

    Raises:
        GoldenSetIntegrityError: A file or span failed validation, ids
            collide, or the directory holds no corpus.
    """
    directory = Path(directory) if directory is not None else DEFAULT_GOLDEN_DIR
    if not directory.is_dir():
        raise GoldenSetIntegrityError(f"golden directory not found: {directory}")

    files = _ordered_files(directory)
    if not files:
        raise GoldenSetIntegrityError(f"no golden files in {directory}")

    prompts: list[GoldenPrompt] = []
    seen: dict[str, str] = {}
    for path in files:
        for prompt in load_golden_file(path):
            if prompt.id in seen:
                raise GoldenSetIntegrityError(
                    f"duplicate prompt id (also in {seen[prompt.id]})",
                    prompt_id=prompt.id,
                    source_file=path.name,
                )
            seen[prompt.id] = path.name
            prompts.append(prompt)
        logger.debug("Loaded golden corpus %s", path.name)

    logger.info("Golden set: %d prompts from %d files", len(prompts), len(files))
    return GoldenSet(prompts=tuple(prompts), files=tuple(p.name for p in files))
