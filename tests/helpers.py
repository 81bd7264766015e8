"""Test doubles shared across test packages."""
from __future__ import annotations

import json

from vcp.errors import ExtractionError
from vcp.extraction.open_vocab import ExtractionOutcome
from vcp.shared.llm import LLMProvider


class ScriptedProvider(LLMProvider):
    """LLMProvider that replays queued responses (str) or raises queued errors."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def generate(self, prompt, model, timeout=90, max_tokens=2000,
                       temperature=0.0, system=None, json_mode=False):
        self.prompts.append(prompt)
        item = self.responses.pop(0) if self.responses else ""
        if isinstance(item, BaseException):
            raise item
        return item


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def model_response(spans, *, adversarial=False, **extra) -> str:
    payload = {"spans": spans, "meta": {"version": "v3", "notes": ""}, "isAdversarial": adversarial}
    payload.update(extra)
    return json.dumps(payload)


class RateLimitedExtractor:
    """Always reports a rate-limited model call."""

    name = "limited"

    def __init__(self):
        self.calls = 0

    async def extract(self, request):
        self.calls += 1
        return ExtractionOutcome.failure(
            ExtractionError("429 from provider", reason="rate_limited"), meta={"retry_after": 5.0},
        )
