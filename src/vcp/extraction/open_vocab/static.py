"""Extractors that never call a model.

``NullSpanExtractor`` backs deterministic-only runs (no credentials, CI
smoke tests). ``StaticSpanExtractor`` replays fixed labels per prompt and
counts calls, which is what cache and pipeline tests need.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..canonical import canonicalize
from .grounding import ground_spans
from .protocol import ExtractionOutcome, ExtractionRequest
from .schema import LabeledSpan

logger = logging.getLogger(__name__)


class NullSpanExtractor:
    """Returns no open-vocabulary spans."""

    @property
    def name(self) -> str:
        return "none"

    async def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        return ExtractionOutcome.success([], meta={"provider": self.name, "valid_first_try": True})


class StaticSpanExtractor:
    """Replays labels from a ``{text: [{"text", "role", "confidence"}]}`` table.

    Texts missing from the table yield no spans. An entry of
    ``{"isAdversarial": True}`` flags the prompt instead of labeling it.
    """

    def __init__(
        self,
        labels: dict[str, Any] | None = None,
        *,
        delay: float = 0.0,
        name: str = "static",
    ) -> None:
        self.labels = dict(labels or {})
        self.delay = delay
        self._name = name
        self.calls: list[ExtractionRequest] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        entry = self.labels.get(request.text, [])
        meta = {"provider": self.name, "valid_first_try": True, "attempts": 1}
        if isinstance(entry, dict) and entry.get("isAdversarial"):
            return ExtractionOutcome.success([], is_adversarial=True, meta=meta)

        canonical = canonicalize(request.text)
        labeled = [LabeledSpan.model_validate(item) for item in entry]
        spans, report = ground_spans(canonical, labeled)
        meta["dropped"] = report.dropped
        return ExtractionOutcome.success(spans, meta=meta)
