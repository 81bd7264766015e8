"""Cache key and version derivation."""

from __future__ import annotations

import hashlib
import json

from vcp.extraction.taxonomy import TAXONOMY_VERSION
from vcp.extraction.types import LabelingPolicy

# Bump when the cached payload layout changes.
CACHE_SCHEMA_VERSION = "2"


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def text_signature(text: str) -> str:
    """Content hash of the canonical text."""
    return _sha256(text)


def text_key_prefix(text: str) -> str:
    return f"span:{text_signature(text)[:16]}"


def build_cache_key(
    text: str,
    policy: LabelingPolicy,
    provider: str = "none",
    context: dict[str, str] | None = None,
) -> str:
    """``span:{sha256(text)[:16]}:{sha256(policy, versions, provider, context)[:8]}``."""
    settings = json.dumps(
        {
            "v": CACHE_SCHEMA_VERSION,
            "taxonomy": TAXONOMY_VERSION,
            "templateVersion": policy.template_version,
            "policy": policy.to_dict(),
            "provider": provider,
            "context": context or {},
        },
        sort_keys=True,
    )
    return f"{text_key_prefix(text)}:{_sha256(settings)[:8]}"


def live_version(template_version: str) -> str:
    """Version stamp stored with every entry and in the global stamp key."""
    return f"{CACHE_SCHEMA_VERSION}|{TAXONOMY_VERSION}|{template_version}"
