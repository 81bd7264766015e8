"""Core records passed between extraction stages.

Every record here is frozen; stages build new lists instead of mutating the
ones they received.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any


class SpanSource(str, Enum):
    USER_INPUT = "user-input"
    SEMANTIC_MATCH = "semantic-match"
    CLOSED_VOCAB = "closed-vocab"
    OPEN_VOCAB = "open-vocab"
    MERGED = "merged"


# Merge priority: higher wins when spans collide.
SOURCE_PRIORITY: dict[SpanSource, int] = {
    SpanSource.USER_INPUT: 3,
    SpanSource.SEMANTIC_MATCH: 3,
    SpanSource.CLOSED_VOCAB: 2,
    SpanSource.MERGED: 1,
    SpanSource.OPEN_VOCAB: 1,
}


@dataclass(frozen=True)
class Span:
    """A labeled substring of the canonical prompt text."""

    start: int
    end: int
    quote: str
    category: str
    confidence: float
    source: SpanSource
    start_grapheme: int = 0
    explanation: str | None = None

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"span start {self.start} must be < end {self.end}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"span confidence {self.confidence} outside [0, 1]")

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def priority(self) -> int:
        return SOURCE_PRIORITY[self.source]

    def overlaps(self, other: "Span") -> bool:
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> dict[str, Any]:
        data = {
            "start": self.start,
            "end": self.end,
            "startGrapheme": self.start_grapheme,
            "quote": self.quote,
            "category": self.category,
            "confidence": round(self.confidence, 4),
            "source": self.source.value,
        }
        if self.explanation:
            data["explanation"] = self.explanation
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Span":
        return cls(
            start=int(data["start"]),
            end=int(data["end"]),
            quote=data["quote"],
            category=data["category"],
            confidence=float(data["confidence"]),
            source=SpanSource(data["source"]),
            start_grapheme=int(data.get("startGrapheme", data.get("start_grapheme", 0))),
            explanation=data.get("explanation"),
        )


CONTEXT_FIELDS = ("subject", "action", "location", "time", "style")


@dataclass(frozen=True)
class PromptContext:
    """Structured fields the caller already knows about the prompt."""

    subject: str | None = None
    action: str | None = None
    location: str | None = None
    time: str | None = None
    style: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> "PromptContext":
        data = data or {}
        return cls(**{k: (str(data[k]) if data.get(k) else None) for k in CONTEXT_FIELDS})

    def items(self) -> list[tuple[str, str]]:
        """Non-empty ``(field, value)`` pairs in fixed field order."""
        pairs = []
        for name in CONTEXT_FIELDS:
            value = getattr(self, name)
            if value and value.strip():
                pairs.append((name, value.strip()))
        return pairs

    def to_dict(self) -> dict[str, str]:
        return dict(self.items())


@dataclass(frozen=True)
class LabelingPolicy:
    non_technical_word_limit: int = 6
    allow_overlap: bool = False
    min_confidence: float = 0.5
    max_spans: int = 60
    template_version: str = "v3"
    repair_fragments: bool = True

    def __post_init__(self) -> None:
        if self.max_spans < 1:
            raise ValueError("max_spans must be >= 1")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError("min_confidence must be within [0, 1]")

    @classmethod
    def from_options(cls, options: dict[str, Any] | None, base: "LabelingPolicy | None" = None) -> "LabelingPolicy":
        """Build a policy from ``run()`` options (flat or nested under ``policy``)."""
        base = base or cls()
        options = dict(options or {})
        nested = options.pop("policy", None) or {}
        merged = {**options, **nested}
        aliases = {
            "maxSpans": "max_spans",
            "minConfidence": "min_confidence",
            "nonTechnicalWordLimit": "non_technical_word_limit",
            "allowOverlap": "allow_overlap",
            "templateVersion": "template_version",
            "repairFragments": "repair_fragments",
        }
        changes = {}
        for key, value in merged.items():
            name = aliases.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                changes[name] = value
        return replace(base, **changes)

    @classmethod
    def from_config(cls, env: dict[str, Any]) -> "LabelingPolicy":
        """Build the default policy from ``vcp.config.parse_env()`` output."""
        return cls(
            non_technical_word_limit=env["non_technical_word_limit"],
            allow_overlap=env["allow_overlap"],
            min_confidence=env["min_confidence"],
            max_spans=env["max_spans"],
            template_version=env["template_version"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MergeStats:
    candidates: int = 0
    rejected_overlap: int = 0
    repaired: int = 0
    below_confidence: int = 0
    over_word_limit: int = 0
    truncated: int = 0
    by_source: dict[str, int] = field(default_factory=dict)
