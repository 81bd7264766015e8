"""Closed-vocabulary matcher.

Deterministic lexicon and pattern scan for terms whose category is known in
advance: shot types, camera moves, lighting setups, film stocks and technical
specs (frame rates, aspect ratios, f-stops, resolutions, film formats).
Every hit gets confidence 1.0.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .canonical import CanonicalText
from .taxonomy import Category, resolve_category
from .types import Span, SpanSource

logger = logging.getLogger(__name__)

DEFAULT_VOCAB_PATH = Path(__file__).parent / "data" / "vocab.json"

# Words that are camera moves only when the sentence is about filming.
AMBIGUOUS_CAMERA_TERMS = frozenset(
    ["pan", "roll", "tilt", "zoom", "drone", "crane", "boom", "truck"]
)
CAMERA_CONTEXT_RADIUS = 50
CAMERA_CONTEXT_RE = re.compile(
    r"(camera|shot|lens|frame|cinematography|cinematic|filming|video|footage)",
    re.IGNORECASE,
)
NON_CAMERA_PREFIX_RE = re.compile(
    r"(frying|saut[eé]|sauce|iron|bread|dinner|hair|egg|spring|cinnamon)\s*$",
    re.IGNORECASE,
)

# Compounds where a lighting noun names an object, not the light.
LIGHTING_EXCLUDED_COMPOUNDS = (
    "traffic light",
    "traffic lights",
    "light switch",
    "light bulb",
    "light fixture",
    "light meter",
    "highlight reel",
    "flashlight",
)


@dataclass(frozen=True)
class TechnicalPattern:
    name: str
    regex: re.Pattern[str]
    category: Category


_NUM = r"\d{1,3}(?:\.\d{1,3})?"

TECHNICAL_PATTERNS: tuple[TechnicalPattern, ...] = (
    TechnicalPattern(
        "frame_rate",
        re.compile(rf"(?<![\w.]){_NUM}\s?(?:fps|frames per second|frames/s)(?!\w)", re.IGNORECASE),
        Category.TECHNICAL_FRAME_RATE,
    ),
    TechnicalPattern(
        "aspect_ratio",
        re.compile(
            r"(?<![\w.:])(?:16:9|9:16|4:3|3:4|1:1|21:9|4:5|5:4|3:2|2:3|"
            r"2\.39:1|2\.35:1|2\.40:1|2\.4:1|1\.85:1|1\.66:1|1\.33:1)(?![\w:])"
        ),
        Category.TECHNICAL_ASPECT_RATIO,
    ),
    TechnicalPattern(
        "f_stop",
        re.compile(
            r"(?<!\w)[fFT]/\d{1,2}(?:\.\d)?(?:\s?[-\u2013]\s?(?:[fFT]/)?\d{1,2}(?:\.\d)?)?(?!\d)"
        ),
        Category.CAMERA_FOCUS,
    ),
    TechnicalPattern(
        "focal_length",
        re.compile(
            r"(?<![\w.])\d{2,3}\s?mm\s+(?:(?:anamorphic|prime|macro|wide-angle|telephoto|vintage)\s+)?lens(?!\w)",
            re.IGNORECASE,
        ),
        Category.CAMERA_LENS,
    ),
    TechnicalPattern(
        "film_format",
        re.compile(r"(?<![\w.])(?:8|16|35|65|70)\s?mm(?!\w)", re.IGNORECASE),
        Category.TECHNICAL_FILM_FORMAT,
    ),
    TechnicalPattern(
        "resolution",
        re.compile(
            r"(?<![\w.])(?:(?:4|5|6|8|12)K|(?:480|576|720|1080|1440|2160|4320)[pi]|UHD|Full HD)(?!\w)",
            re.IGNORECASE,
        ),
        Category.TECHNICAL_RESOLUTION,
    ),
    TechnicalPattern(
        "duration",
        re.compile(
            r"(?<![\w.])\d{1,3}(?:\.\d)?(?:\s?(?:s|sec|secs|seconds?)|-second)(?!\w)",
            re.IGNORECASE,
        ),
        Category.TECHNICAL_DURATION,
    ),
)


@dataclass(frozen=True)
class _Hit:
    start: int
    end: int
    category: str
    rank: int

    @property
    def length(self) -> int:
        return self.end - self.start


def _term_pattern(term: str) -> re.Pattern[str]:
    tokens = [re.escape(t) for t in re.split(r"[\s\-]+", term.strip()) if t]
    body = r"[\s\-]+".join(tokens)
    return re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)


@dataclass(frozen=True)
class Lexicon:
    """Compiled lexicon: one pattern per term, longest terms first."""

    version: str
    entries: tuple[tuple[str, str, re.Pattern[str]], ...]

    def __len__(self) -> int:
        return len(self.entries)


def load_vocab(path: str | Path | None = None) -> Lexicon:
    """Load a ``{"terms": {category: [term, ...]}}`` vocabulary file."""
    vocab_path = Path(path) if path else DEFAULT_VOCAB_PATH
    with open(vocab_path, encoding="utf-8") as f:
        data = json.load(f)

    entries: list[tuple[str, str, re.Pattern[str]]] = []
    seen: set[str] = set()
    for raw_category, terms in data.get("terms", {}).items():
        category = resolve_category(raw_category, strict=True)
        for term in terms:
            key = term.lower()
            if key in seen:
                logger.debug("Duplicate vocab term %r ignored (%s)", term, category)
                continue
            seen.add(key)
            entries.append((term.lower(), category, _term_pattern(term)))

    entries.sort(key=lambda e: (-len(e[0]), e[0]))
    logger.debug("Loaded %d vocab terms from %s", len(entries), vocab_path)
    return Lexicon(version=str(data.get("version", "")), entries=tuple(entries))


@lru_cache(maxsize=1)
def default_lexicon() -> Lexicon:
    return load_vocab()


def has_camera_context(text: str, start: int, end: int) -> bool:
    window = text[max(0, start - CAMERA_CONTEXT_RADIUS):min(len(text), end + CAMERA_CONTEXT_RADIUS)]
    return bool(CAMERA_CONTEXT_RE.search(window))


def _is_ambiguous_camera_miss(text: str, start: int, end: int) -> bool:
    before = text[max(0, start - 20):start]
    if NON_CAMERA_PREFIX_RE.search(before):
        return True
    return not has_camera_context(text, start, end)


def _inside_excluded_compound(text: str, start: int, end: int) -> bool:
    lowered = text.lower()
    for compound in LIGHTING_EXCLUDED_COMPOUNDS:
        idx = lowered.find(compound, max(0, start - len(compound)))
        while idx != -1 and idx <= end:
            if idx < end and start < idx + len(compound):
                return True
            idx = lowered.find(compound, idx + 1)
    return False


def _collect_hits(text: str, lexicon: Lexicon) -> list[_Hit]:
    hits: list[_Hit] = []

    for rank, pattern in enumerate(TECHNICAL_PATTERNS):
        for m in pattern.regex.finditer(text):
            hits.append(_Hit(m.start(), m.end(), pattern.category.value, rank))

    base_rank = len(TECHNICAL_PATTERNS)
    for offset, (term, category, regex) in enumerate(lexicon.entries):
        for m in regex.finditer(text):
            if term in AMBIGUOUS_CAMERA_TERMS and category == Category.CAMERA_MOVEMENT.value:
                if _is_ambiguous_camera_miss(text, m.start(), m.end()):
                    continue
            if category.startswith("lighting.") and _inside_excluded_compound(text, m.start(), m.end()):
                continue
            hits.append(_Hit(m.start(), m.end(), category, base_rank + offset))
    return hits


def _longest_match_wins(hits: list[_Hit]) -> list[_Hit]:
    ordered = sorted(hits, key=lambda h: (-h.length, h.start, h.rank))
    accepted: list[_Hit] = []
    for hit in ordered:
        if any(hit.start < a.end and a.start < hit.end for a in accepted):
            continue
        accepted.append(hit)
    return sorted(accepted, key=lambda h: h.start)


def match_closed_vocab(canonical: CanonicalText, lexicon: Lexicon | None = None) -> list[Span]:
    """Return closed-vocabulary spans for *canonical*, sorted by start."""
    text = canonical.text
    if not text:
        return []
    lexicon = lexicon or default_lexicon()

    spans = []
    for hit in _longest_match_wins(_collect_hits(text, lexicon)):
        start, end = canonical.snap(hit.start, hit.end)
        spans.append(Span(
            start=start,
            end=end,
            quote=text[start:end],
            category=hit.category,
            confidence=1.0,
            source=SpanSource.CLOSED_VOCAB,
            start_grapheme=canonical.grapheme_at(start),
        ))
    logger.debug("closed-vocab: %d spans", len(spans))
    return spans
