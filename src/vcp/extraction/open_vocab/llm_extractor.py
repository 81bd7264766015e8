"""Open-vocabulary extractor backed by an LLM provider.

Flow per chunk: prompt -> parse JSON -> inject default meta -> validate ->
(one corrective retry with the validation errors) -> ground span text to
offsets. Adversarial responses short-circuit to zero spans.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from vcp.errors import ExtractionError, RateLimitError
from vcp.shared.llm import LLMProvider

from ..canonical import CanonicalText, canonicalize
from ..types import Span
from .chunking import Chunk, split_into_chunks
from .grounding import ground_spans
from .parsing import parse_json_payload
from .prompts import build_repair_prompt, build_system_prompt, build_user_prompt, describe_request
from .protocol import ExtractionOutcome, ExtractionRequest
from .schema import read_adversarial_flag, validate_response

logger = logging.getLogger(__name__)


@dataclass
class _ChunkResult:
    spans: list[Span] = field(default_factory=list)
    is_adversarial: bool = False
    valid_first_try: bool = False
    attempts: int = 0
    dropped: int = 0
    error: ExtractionError | None = None


class LLMSpanExtractor:
    """SpanExtractor that prompts an ``LLMProvider`` for span labels."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str = "sonnet",
        *,
        chunk_chars: int = 1200,
        timeout: int = 60,
        max_tokens: int = 4000,
    ) -> None:
        self.provider = provider
        self.model = model
        self.chunk_chars = chunk_chars
        self.timeout = timeout
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return f"{self.provider.name}:{self.model}"

    async def _generate(self, prompt: str, system: str) -> str:
        return await self.provider.generate(
            prompt,
            model=self.model,
            timeout=self.timeout,
            max_tokens=self.max_tokens,
            temperature=0.0,
            system=system,
            json_mode=True,
        )

    async def _extract_chunk(
        self, canonical: CanonicalText, chunk: Chunk, request: ExtractionRequest,
    ) -> _ChunkResult:
        result = _ChunkResult()
        system = build_system_prompt(request.max_spans, request.min_confidence)

        raw = await self._generate(build_user_prompt(chunk.text), system)
        result.attempts = 1
        payload = parse_json_payload(raw)
        result.is_adversarial = read_adversarial_flag(payload)
        response, errors = validate_response(payload, request.template_version)
        if not raw:
            errors = ["empty response"]

        if response is None:
            logger.info(
                "Invalid model response (chunk %d): %s; retrying once",
                chunk.index,
                "; ".join(errors[:3]),
            )
            raw = await self._generate(build_repair_prompt(chunk.text, raw, errors), system)
            result.attempts = 2
            payload = parse_json_payload(raw)
            result.is_adversarial = result.is_adversarial or read_adversarial_flag(payload)
            response, errors = validate_response(payload, request.template_version)
            if response is None:
                result.error = ExtractionError(
                    f"model response invalid after retry: {'; '.join(errors[:3]) or 'empty response'}",
                    reason="invalid_response",
                    validation_errors=errors,
                    raw_response=(raw or "")[:2000],
                )
                return result
        else:
            result.valid_first_try = True

        if response.is_adversarial:
            result.is_adversarial = True
            return result

        spans, report = ground_spans(
            canonical,
            response.spans,
            base_offset=chunk.start_char,
            window=(chunk.start_char, chunk.end_char),
        )
        result.spans = spans
        result.dropped = report.dropped
        return result

    async def _run_chunks(
        self, canonical: CanonicalText, chunks: list[Chunk], request: ExtractionRequest,
    ) -> list[_ChunkResult]:
        tasks = [asyncio.ensure_future(self._extract_chunk(canonical, c, request)) for c in chunks]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # leave no chunk call running after a failure or cancellation
            for task in tasks:
                task.cancel()
            raise

    async def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        start = time.perf_counter()
        canonical = canonicalize(request.text)
        chunks = split_into_chunks(canonical.text, self.chunk_chars)
        logger.debug("[%s] extract %s chunks=%d", self.name, describe_request(
            canonical.text, request.max_spans, request.min_confidence), len(chunks))

        meta = {"provider": self.provider.name, "model": self.model, "chunks": len(chunks)}
        if not chunks:
            meta.update(valid_first_try=True, repaired=False, attempts=0, dropped=0, latency_ms=0.0)
            return ExtractionOutcome.success([], meta=meta)

        try:
            results = await self._run_chunks(canonical, chunks, request)
        except RateLimitError as e:
            meta["latency_ms"] = round((time.perf_counter() - start) * 1000, 1)
            meta["retry_after"] = e.retry_after
            return ExtractionOutcome.failure(
                ExtractionError(str(e), reason="rate_limited"), meta=meta,
            )

        is_adversarial = any(r.is_adversarial for r in results)
        meta.update(
            valid_first_try=all(r.valid_first_try for r in results),
            repaired=any(r.attempts > 1 and r.error is None for r in results),
            attempts=sum(r.attempts for r in results),
            dropped=sum(r.dropped for r in results),
            latency_ms=round((time.perf_counter() - start) * 1000, 1),
        )

        failed = next((r.error for r in results if r.error is not None), None)
        if failed is not None:
            logger.warning("[%s] extraction failed: %s", self.name, failed)
            return ExtractionOutcome.failure(failed, is_adversarial=is_adversarial, meta=meta)

        if is_adversarial:
            logger.info("[%s] input flagged adversarial", self.name)
            return ExtractionOutcome.success([], is_adversarial=True, meta=meta)

        spans = sorted(
            (s for r in results for s in r.spans),
            key=lambda s: (s.start, s.end, s.category),
        )
        return ExtractionOutcome.success(spans, meta=meta)
