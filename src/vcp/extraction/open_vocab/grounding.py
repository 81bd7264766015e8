"""Grounding of model-returned span text to canonical offsets.

Models return span text, sometimes with an approximate start offset. Each
span is located in the canonical text: exact match first (closest to the
hint when the text repeats), then case-insensitive. Spans that cannot be
located are dropped; offsets are never invented.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..canonical import CanonicalText
from ..taxonomy import resolve_category
from ..types import Span, SpanSource
from .schema import LabeledSpan

logger = logging.getLogger(__name__)


@dataclass
class GroundingReport:
    exact: int = 0
    case_insensitive: int = 0
    dropped: int = 0
    dropped_text: list[str] = field(default_factory=list)


def _prefer_window(hits: list[tuple[int, int]],
                   window: tuple[int, int] | None) -> list[tuple[int, int]]:
    if window is None:
        return hits
    inside = [h for h in hits if window[0] <= h[0] and h[1] <= window[1]]
    return inside or hits


def _closest(hits: list[tuple[int, int]], hint: int | None,
             used: set[tuple[int, int]]) -> tuple[int, int] | None:
    free = [h for h in hits if h not in used] or hits
    if not free:
        return None
    if hint is None:
        return free[0]
    return min(free, key=lambda h: (abs(h[0] - hint), h[0]))


def ground_spans(
    canonical: CanonicalText,
    labeled: list[LabeledSpan],
    *,
    base_offset: int = 0,
    window: tuple[int, int] | None = None,
    source: SpanSource = SpanSource.OPEN_VOCAB,
) -> tuple[list[Span], GroundingReport]:
    """Resolve model spans to ``Span`` records on *canonical*.

    Args:
        canonical: Full canonical text.
        labeled: Validated model spans.
        base_offset: Offset of the chunk the model saw; start hints are
            relative to it.
        window: Range the model actually saw; hits inside it are preferred.
        source: Provenance tag for the produced spans.
    """
    report = GroundingReport()
    used: set[tuple[int, int]] = set()
    spans: list[Span] = []

    for item in labeled:
        needle = item.text.strip()
        hint = item.start + base_offset if item.start is not None else base_offset
        chosen = _closest(_prefer_window(canonical.find_all(needle), window), hint, used)
        if chosen is not None:
            report.exact += 1
        else:
            hits = canonical.find_all(needle, case_insensitive=True)
            chosen = _closest(_prefer_window(hits, window), hint, used)
            if chosen is not None:
                report.case_insensitive += 1

        if chosen is None:
            report.dropped += 1
            report.dropped_text.append(needle[:80])
            logger.debug("Ungrounded span dropped: %r", needle[:80])
            continue

        used.add(chosen)
        start, end = chosen
        spans.append(Span(
            start=start,
            end=end,
            quote=canonical.text[start:end],
            category=resolve_category(item.role),
            confidence=float(item.confidence),
            source=source,
            start_grapheme=canonical.grapheme_at(start),
            explanation=item.explanation,
        ))

    return spans, report
