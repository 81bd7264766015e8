"""Context priority matcher.

Locates the caller's structured prompt fields (subject, action, location,
time, style) inside the canonical text. Literal hits are trusted fully;
known semantic variants ("magic hour" for "golden hour") get a lower score.
"""

from __future__ import annotations

import logging

from .canonical import CanonicalText
from .taxonomy import Category
from .types import PromptContext, Span, SpanSource

logger = logging.getLogger(__name__)

LITERAL_CONFIDENCE = 1.0
SEMANTIC_CONFIDENCE = 0.8

FIELD_CATEGORIES: dict[str, Category] = {
    "subject": Category.SUBJECT_IDENTITY,
    "action": Category.ACTION_MOVEMENT,
    "location": Category.ENVIRONMENT_LOCATION,
    "time": Category.LIGHTING_TIME_OF_DAY,
    "style": Category.STYLE_AESTHETIC,
}

# Each group lists phrases that describe the same visual choice.
SEMANTIC_VARIANTS: tuple[tuple[str, ...], ...] = (
    ("golden hour", "magic hour", "sunset glow", "late golden light"),
    ("blue hour", "twilight", "dusk"),
    ("dawn", "daybreak", "first light", "sunrise"),
    ("midnight", "dead of night", "late night"),
    ("noon", "midday", "high noon"),
    ("night", "nighttime", "after dark"),
    ("film noir", "noir", "neo-noir"),
    ("cyberpunk", "neon-noir", "neon noir"),
    ("documentary", "documentary style", "vérité", "cinema verite"),
    ("black and white", "black-and-white", "monochrome", "grayscale"),
    ("anime", "animé", "japanese animation"),
    ("photorealistic", "hyperrealistic", "lifelike"),
    ("forest", "woods", "woodland"),
    ("city", "metropolis", "urban"),
    ("beach", "shore", "seaside", "coastline"),
    ("desert", "dunes", "wasteland"),
    ("spaceship", "spacecraft", "starship"),
    ("space station", "orbital station", "station"),
    ("running", "sprinting", "dashing"),
    ("walking", "strolling", "wandering"),
    ("dancing", "twirling"),
    ("astronaut", "spaceman", "cosmonaut"),
    ("car", "automobile", "vehicle"),
    ("dog", "puppy", "hound"),
)


def _variants_for(value: str) -> list[str]:
    key = value.lower()
    out: list[str] = []
    for group in SEMANTIC_VARIANTS:
        if key in group:
            out.extend(v for v in group if v != key and v not in out)
    return out


def _pick(hits: list[tuple[int, int]], occurrence: int | None) -> tuple[int, int] | None:
    if not hits:
        return None
    if occurrence is None:
        return hits[0]
    if 0 <= occurrence < len(hits):
        return hits[occurrence]
    logger.debug("occurrence %d out of range (%d hits), using first", occurrence, len(hits))
    return hits[0]


def _make_span(canonical: CanonicalText, start: int, end: int, field: str,
               confidence: float, source: SpanSource, explanation: str) -> Span:
    return Span(
        start=start,
        end=end,
        quote=canonical.text[start:end],
        category=FIELD_CATEGORIES[field].value,
        confidence=confidence,
        source=source,
        start_grapheme=canonical.grapheme_at(start),
        explanation=explanation,
    )


def match_context(
    canonical: CanonicalText,
    context: PromptContext | None,
    occurrences: dict[str, int] | None = None,
) -> list[Span]:
    """Return one span per context field found in the text, sorted by start.

    *occurrences* selects the n-th (0-based) literal hit for a field; without
    it the first occurrence wins. Runtime matching never fails on ambiguity.
    """
    if context is None or not canonical.text:
        return []
    occurrences = occurrences or {}

    spans: list[Span] = []
    for field, value in context.items():
        hits = canonical.find_all(value, case_insensitive=True, word_bounded=True)
        chosen = _pick(hits, occurrences.get(field))
        if chosen is not None:
            if len(hits) > 1 and field not in occurrences:
                logger.debug("context %s=%r matched %d times, using first", field, value, len(hits))
            spans.append(_make_span(
                canonical, *chosen, field, LITERAL_CONFIDENCE, SpanSource.USER_INPUT,
                f"context field '{field}'",
            ))
            continue

        for variant in _variants_for(value):
            hits = canonical.find_all(variant, case_insensitive=True, word_bounded=True)
            if hits:
                spans.append(_make_span(
                    canonical, *hits[0], field, SEMANTIC_CONFIDENCE, SpanSource.SEMANTIC_MATCH,
                    f"context field '{field}' ({value!r} ~ {variant!r})",
                ))
                break
        else:
            logger.debug("context %s=%r not found in text", field, value)

    spans.sort(key=lambda s: (s.start, -s.length))
    return spans
