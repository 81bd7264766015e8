"""FastAPI application exposing the span labeling pipeline.

Endpoints:
- POST /label-spans - Label visual control points in a prompt; after a
  provider rate limit, answers from the last known state until the cooldown
  (VCP_RATE_LIMIT_COOLDOWN) ends
- GET /health - Service health status
- GET /cache/stats - Result cache counters
- POST /cache/invalidate - Drop cached results for a prompt text

Environment variables:
- See ``vcp.config``; VCP_CACHE_STORAGE selects the cache backend.

Usage:
    uvicorn vcp.service.app:app --port 8000
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from vcp.cache import ResultCache, live_version
from vcp.config import parse_env
from vcp.extraction.canonical import canonicalize
from vcp.extraction.open_vocab import create_extractor
from vcp.extraction.session import LabelingSession
from vcp.extraction.types import LabelingPolicy
from vcp.shared.storage import create_storage

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


class PolicyOptions(BaseModel):
    """Per-request policy overrides."""
    non_technical_word_limit: int | None = Field(default=None, ge=1)
    allow_overlap: bool | None = None


class LabelRequest(BaseModel):
    """Request body for /label-spans."""
    text: str = Field(..., description="Prompt text to label")
    context: dict[str, str] | None = Field(default=None, description="Known subject/action/location/time/style")
    max_spans: int | None = Field(default=None, ge=1, le=200)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    template_version: str | None = None
    policy: PolicyOptions | None = None


class SpanModel(BaseModel):
    """One labeled span; offsets index the canonical text."""
    start: int
    end: int
    startGrapheme: int
    quote: str
    category: str
    confidence: float
    source: str
    explanation: str | None = None


class LabelResponse(BaseModel):
    """Response body for /label-spans."""
    spans: list[SpanModel]
    canonicalText: str
    isAdversarial: bool
    meta: dict[str, Any]
    elapsed_ms: float


class HealthResponse(BaseModel):
    """Response body for /health."""
    status: str = Field(..., description="'ready' or 'starting'")
    extractor: str
    cache_entries: int


class InvalidateRequest(BaseModel):
    """Request body for /cache/invalidate."""
    text: str


class InvalidateResponse(BaseModel):
    removed: int


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Construct storage, cache and extractor; dispose them on shutdown."""
    env = parse_env()
    logger.info(f"[Service] Starting with cache storage={env['cache_storage']} model={env['llm_model']}")

    storage = create_storage(env["cache_storage"], path=env["cache_path"], url=env["cache_url"])
    cache = ResultCache(
        storage,
        version=live_version(env["template_version"]),
        max_entries=env["cache_max_entries"],
        ttl_seconds=env["cache_ttl_hours"] * 3600,
    )
    loaded = await cache.start()
    logger.info(f"[Service] Cache hydrated with {loaded} entries")

    app.state.env = env
    app.state.cache = cache
    app.state.policy = LabelingPolicy.from_config(env)
    app.state.extractor = create_extractor(env["llm_model"], chunk_chars=env["chunk_chars"])
    # rate limits are per provider, so every caller shares one cooldown
    app.state.session = LabelingSession(
        app.state.extractor,
        cache=cache,
        policy_base=app.state.policy,
        cooldown_seconds=env["rate_limit_cooldown"],
        supersede=False,
    )
    app.state.startup_time = time.time()
    logger.info("[Service] Startup complete")
    yield

    logger.info("[Service] Shutting down...")
    await cache.dispose()
    provider = getattr(app.state.extractor, "provider", None)
    if provider is not None:
        await provider.aclose()
    logger.info("[Service] Shutdown complete")


app = FastAPI(
    title="VCP Span Labeling Service",
    description="Extracts visual control points from video-generation prompts",
    version="0.1.0",
    lifespan=lifespan,
)


@app.post("/label-spans", response_model=LabelResponse)
async def label_spans(body: LabelRequest, request: Request) -> LabelResponse:
    """Label a prompt, serving repeated requests from the result cache."""
    state = request.app.state
    start_time = time.time()

    options: dict[str, Any] = {
        "max_spans": body.max_spans,
        "min_confidence": body.min_confidence,
        "template_version": body.template_version,
    }
    if body.policy is not None:
        options["policy"] = body.policy.model_dump(exclude_none=True)

    try:
        result = await state.session.label(body.text, body.context, options)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"[Service] Labeling failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return LabelResponse(
        spans=[SpanModel(**s.to_dict()) for s in result.spans],
        canonicalText=result.canonical.text,
        isAdversarial=result.is_adversarial,
        meta=result.meta,
        elapsed_ms=(time.time() - start_time) * 1000,
    )


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Service health; 'ready' once the cache has hydrated."""
    state = request.app.state
    cache: ResultCache | None = getattr(state, "cache", None)
    return HealthResponse(
        status="ready" if cache is not None else "starting",
        extractor=state.extractor.name if cache is not None else "",
        cache_entries=len(cache) if cache is not None else 0,
    )


@app.get("/cache/stats")
async def cache_stats(request: Request) -> dict[str, Any]:
    return request.app.state.cache.stats()


@app.post("/cache/invalidate", response_model=InvalidateResponse)
async def cache_invalidate(body: InvalidateRequest, request: Request) -> InvalidateResponse:
    removed = request.app.state.cache.invalidate(canonicalize(body.text).text)
    logger.info(f"[Service] Invalidated {removed} cache entries")
    return InvalidateResponse(removed=removed)
