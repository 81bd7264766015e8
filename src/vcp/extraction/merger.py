"""Span merger / resolver.

Fuses context, closed-vocabulary and open-vocabulary candidates into one
ordered, non-overlapping, capped span list. Order of operations:

1. drop candidates whose offsets do not slice back to their quote
2. drop open-vocabulary phrases over the non-technical word limit
3. stable sort by (source priority, confidence, length) and accept greedily
4. fragmentation repair (adjacent same-category spans become one)
5. drop spans below ``min_confidence``
6. cap at ``max_spans``

The cap runs after repair, so it counts repaired spans, not fragments.
``MergeResult.raw`` keeps every pre-merge candidate and
``MergeResult.pre_repair`` the accepted spans before repair and cap; the
evaluator measures fragmentation on the latter.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field

from .canonical import CanonicalText
from .open_vocab.protocol import ExtractionOutcome
from .taxonomy import is_technical
from .types import LabelingPolicy, MergeStats, Span, SpanSource

logger = logging.getLogger(__name__)

# Text allowed between two fragments that should be one span.
_FRAGMENT_GAP_RE = re.compile(r"[ \t-]{0,2}")


@dataclass(frozen=True)
class MergeResult:
    spans: tuple[Span, ...]
    raw: tuple[Span, ...]
    pre_repair: tuple[Span, ...] = ()
    stats: MergeStats = field(default_factory=MergeStats)
    is_adversarial: bool = False


def _rank_key(span: Span) -> tuple[int, float, int, int, int]:
    return (-span.priority, -span.confidence, -span.length, span.start, span.end)


def _word_count(text: str) -> int:
    return len(text.split())


def _is_valid(span: Span, canonical: CanonicalText) -> bool:
    return 0 <= span.start < span.end <= len(canonical.text) and canonical.text[span.start:span.end] == span.quote


def _over_word_limit(span: Span, limit: int) -> bool:
    if span.source is not SpanSource.OPEN_VOCAB or limit <= 0:
        return False
    return not is_technical(span.category) and _word_count(span.quote) > limit


def _accept(candidates: list[Span], allow_overlap: bool) -> tuple[list[Span], int]:
    accepted: list[Span] = []
    seen: set[tuple[int, int, str]] = set()
    rejected = 0
    for span in sorted(candidates, key=_rank_key):
        ident = (span.start, span.end, span.category)
        if ident in seen:
            rejected += 1
            continue
        if not allow_overlap and any(span.overlaps(a) for a in accepted):
            rejected += 1
            continue
        seen.add(ident)
        accepted.append(span)
    return accepted, rejected


def repair_fragments(spans: list[Span], canonical: CanonicalText) -> tuple[list[Span], int]:
    """Join start-ordered spans that touch and share a category.

    Two spans touch when only up to two spaces, tabs or hyphens separate
    them. The joined span keeps the weaker confidence; mixed sources become
    ``merged``.
    """
    if not spans:
        return [], 0
    ordered = sorted(spans, key=lambda s: (s.start, s.end))
    out: list[Span] = [ordered[0]]
    repaired = 0
    for span in ordered[1:]:
        prev = out[-1]
        gap = canonical.text[prev.end:span.start] if span.start >= prev.end else None
        if gap is not None and prev.category == span.category and _FRAGMENT_GAP_RE.fullmatch(gap):
            source = prev.source if prev.source == span.source else SpanSource.MERGED
            out[-1] = Span(
                start=prev.start,
                end=span.end,
                quote=canonical.text[prev.start:span.end],
                category=prev.category,
                confidence=min(prev.confidence, span.confidence),
                source=source,
                start_grapheme=prev.start_grapheme,
                explanation=prev.explanation or span.explanation,
            )
            repaired += 1
        else:
            out.append(span)
    return out, repaired


def _cap(spans: list[Span], max_spans: int) -> list[Span]:
    if len(spans) <= max_spans:
        return spans
    kept = sorted(spans, key=_rank_key)[:max_spans]
    return sorted(kept, key=lambda s: (s.start, s.end))


def resolve_spans(
    canonical: CanonicalText,
    policy: LabelingPolicy,
    *,
    context_spans: list[Span] | tuple[Span, ...] = (),
    closed_spans: list[Span] | tuple[Span, ...] = (),
    outcome: ExtractionOutcome | None = None,
) -> MergeResult:
    """Fuse all candidate sources into the final span list.

    A failed *outcome* contributes no spans (deterministic sources still do).
    An adversarial outcome empties the result but keeps the candidates in
    ``raw``.
    """
    open_spans = tuple(outcome.spans) if outcome is not None and outcome.ok else ()
    raw = tuple(context_spans) + tuple(closed_spans) + open_spans
    by_source = dict(Counter(s.source.value for s in raw))
    is_adversarial = bool(outcome is not None and outcome.is_adversarial)

    if is_adversarial:
        return MergeResult(spans=(), raw=raw, stats=MergeStats(candidates=len(raw), by_source=by_source),
                           is_adversarial=True)

    valid = []
    for span in raw:
        if _is_valid(span, canonical):
            valid.append(span)
        else:
            logger.warning("Dropping span with bad offsets [%d,%d) %r", span.start, span.end, span.quote[:40])

    within_limit = [s for s in valid if not _over_word_limit(s, policy.non_technical_word_limit)]
    over_limit = len(valid) - len(within_limit)

    accepted, rejected = _accept(within_limit, policy.allow_overlap)
    pre_repair = tuple(sorted(accepted, key=lambda s: (s.start, s.end)))

    repaired = 0
    if policy.repair_fragments and not policy.allow_overlap:
        accepted, repaired = repair_fragments(accepted, canonical)

    confident = [s for s in accepted if s.confidence >= policy.min_confidence]
    below = len(accepted) - len(confident)
    confident.sort(key=lambda s: (s.start, s.end))

    final = _cap(confident, policy.max_spans)
    stats = MergeStats(
        candidates=len(raw),
        rejected_overlap=rejected,
        repaired=repaired,
        below_confidence=below,
        over_word_limit=over_limit,
        truncated=len(confident) - len(final),
        by_source=by_source,
    )
    logger.debug("merge: %s", stats)
    return MergeResult(spans=tuple(final), raw=raw, pre_repair=pre_repair, stats=stats)
