"""Build the configured open-vocabulary extractor."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from vcp.shared.llm import get_provider

from .llm_extractor import LLMSpanExtractor
from .protocol import SpanExtractor
from .static import NullSpanExtractor, StaticSpanExtractor

logger = logging.getLogger(__name__)

NO_MODEL = ("none", "off", "")


def load_labels(path: str | Path) -> dict:
    """Read a ``{text: [label, ...]}`` table for ``StaticSpanExtractor``."""
    path = Path(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object keyed by prompt text")
    return data


def create_extractor(
    model: str | None = None,
    *,
    labels_path: str | Path | None = None,
    chunk_chars: int = 1200,
) -> SpanExtractor:
    """Return a static extractor for *labels_path*, none for ``model="none"``, else the LLM one."""
    if labels_path is not None:
        logger.info("Using static labels from %s", labels_path)
        return StaticSpanExtractor(load_labels(labels_path), name=f"static:{Path(labels_path).name}")
    if model is None or model.lower() in NO_MODEL:
        logger.info("Open-vocabulary extraction disabled")
        return NullSpanExtractor()
    return LLMSpanExtractor(get_provider(model), model, chunk_chars=chunk_chars)
