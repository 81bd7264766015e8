"""Environment configuration.

Environment Variables:
    VCP_LLM_MODEL: Model used by the open-vocabulary extractor (default: sonnet)
    VCP_MAX_SPANS: Maximum spans returned per prompt (default: 60)
    VCP_MIN_CONFIDENCE: Minimum span confidence (default: 0.5)
    VCP_NON_TECHNICAL_WORD_LIMIT: Max words in a non-technical model span (default: 6)
    VCP_ALLOW_OVERLAP: Keep overlapping spans (default: false)
    VCP_TEMPLATE_VERSION: Prompt template version, part of the cache key (default: v3)
    VCP_CACHE_STORAGE: memory | file | redis (default: memory)
    VCP_CACHE_PATH: JSON file used by the file backend (default: .cache/span_cache.json)
    VCP_CACHE_URL: Redis URL used by the redis backend (default: redis://localhost:6379)
    VCP_CACHE_MAX_ENTRIES: LRU bound (default: 200)
    VCP_CACHE_TTL_HOURS: Entry age horizon (default: 24)
    VCP_RATE_LIMIT_COOLDOWN: Seconds to suppress calls after a rate limit (default: 30)
    VCP_CHUNK_CHARS: Open-vocabulary chunk size for long prompts (default: 1200)
    VCP_GOLDEN_DIR: Golden-set directory (default: data/golden)
    VCP_SNAPSHOT_DIR: Snapshot output directory (default: snapshots)
    VCP_EVAL_DELAY_MS: Delay between evaluation calls (default: 250)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any


def parse_bool(value: str) -> bool:
    """Parse boolean from environment variable."""
    return value.lower() in ("true", "1", "yes", "on")


def parse_env() -> dict[str, Any]:
    """Parse environment variables with defaults."""
    return {
        "llm_model": os.getenv("VCP_LLM_MODEL", "sonnet"),
        "max_spans": int(os.getenv("VCP_MAX_SPANS", "60")),
        "min_confidence": float(os.getenv("VCP_MIN_CONFIDENCE", "0.5")),
        "non_technical_word_limit": int(os.getenv("VCP_NON_TECHNICAL_WORD_LIMIT", "6")),
        "allow_overlap": parse_bool(os.getenv("VCP_ALLOW_OVERLAP", "false")),
        "template_version": os.getenv("VCP_TEMPLATE_VERSION", "v3"),
        "cache_storage": os.getenv("VCP_CACHE_STORAGE", "memory").lower(),
        "cache_path": Path(os.getenv("VCP_CACHE_PATH", ".cache/span_cache.json")),
        "cache_url": os.getenv("VCP_CACHE_URL", "redis://localhost:6379"),
        "cache_max_entries": int(os.getenv("VCP_CACHE_MAX_ENTRIES", "200")),
        "cache_ttl_hours": float(os.getenv("VCP_CACHE_TTL_HOURS", "24")),
        "rate_limit_cooldown": float(os.getenv("VCP_RATE_LIMIT_COOLDOWN", "30")),
        "chunk_chars": int(os.getenv("VCP_CHUNK_CHARS", "1200")),
        "golden_dir": Path(os.getenv("VCP_GOLDEN_DIR", "data/golden")),
        "snapshot_dir": Path(os.getenv("VCP_SNAPSHOT_DIR", "snapshots")),
        "eval_delay_ms": int(os.getenv("VCP_EVAL_DELAY_MS", "250")),
    }
