"""Adapter contract for open-vocabulary span extraction.

Any model backend satisfies ``SpanExtractor``: it receives the canonical
text and policy limits and returns an ``ExtractionOutcome``. Failure is a
value, not an exception; the pipeline threads the outcome through the merger
and degrades to deterministic spans when ``outcome.ok`` is False.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from vcp.errors import ExtractionError

from ..types import Span


@dataclass(frozen=True)
class ExtractionRequest:
    text: str
    max_spans: int = 60
    min_confidence: float = 0.5
    template_version: str = "v3"

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "maxSpans": self.max_spans,
            "minConfidence": self.min_confidence,
            "templateVersion": self.template_version,
        }


@dataclass(frozen=True)
class ExtractionOutcome:
    """Result of one extractor call.

    ``is_adversarial`` is reported on success and failure alike.
    """

    spans: tuple[Span, ...] = ()
    is_adversarial: bool = False
    meta: dict[str, Any] = field(default_factory=dict)
    error: ExtractionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failure_reason(self) -> str | None:
        return self.error.reason if self.error else None

    @classmethod
    def success(cls, spans: list[Span] | tuple[Span, ...], *, is_adversarial: bool = False,
                meta: dict[str, Any] | None = None) -> "ExtractionOutcome":
        return cls(spans=tuple(spans), is_adversarial=is_adversarial, meta=dict(meta or {}))

    @classmethod
    def failure(cls, error: ExtractionError, *, is_adversarial: bool = False,
                meta: dict[str, Any] | None = None) -> "ExtractionOutcome":
        return cls(spans=(), is_adversarial=is_adversarial, meta=dict(meta or {}), error=error)

    def summary(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "reason": self.failure_reason,
            "isAdversarial": self.is_adversarial,
            "spanCount": len(self.spans),
            **{k: v for k, v in self.meta.items() if k != "raw"},
        }


@runtime_checkable
class SpanExtractor(Protocol):
    """Protocol every open-vocabulary backend implements."""

    @property
    def name(self) -> str:
        """Identifier included in cache keys and result meta."""
        ...

    async def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        """Label spans in ``request.text``.

        Cancelling the awaiting task must abort any in-flight work.
        """
        ...
