"""Base LLM provider interface and model routing.

This module defines the abstract LLMProvider interface and get_provider(),
which picks the provider for a model name.
Providers are async so an in-flight request can be cancelled by cancelling
the awaiting task.
"""

from __future__ import annotations

import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger("vcp.shared.llm")

# ---------------------------------------------------------------------------
# Retry configuration (shared by all providers)
# ---------------------------------------------------------------------------

DEFAULT_MAX_RETRIES = 4
DEFAULT_INITIAL_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 60.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
JITTER_FACTOR = 0.1


def calculate_backoff(attempt: int, retry_after: float | None) -> float:
    if retry_after is not None:
        return min(retry_after, DEFAULT_MAX_BACKOFF)
    backoff = DEFAULT_INITIAL_BACKOFF * (DEFAULT_BACKOFF_MULTIPLIER ** attempt)
    backoff = min(backoff, DEFAULT_MAX_BACKOFF)
    jitter = backoff * JITTER_FACTOR * random.random()
    return backoff + jitter


def parse_retry_after(response: Any) -> float | None:
    retry_after = response.headers.get("retry-after")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return None


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------


class LLMProvider(ABC):
    """Abstract base for LLM providers (Anthropic, Gemini)."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g. 'anthropic', 'gemini')."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        model: str,
        timeout: int = 90,
        max_tokens: int = 2000,
        temperature: float = 0.0,
        system: str | None = None,
        json_mode: bool = False,
    ) -> str:
        """Generate a text completion.

        Args:
            prompt: User prompt text.
            model: Model name or alias (e.g. 'sonnet', 'gemini-2.5-flash').
            timeout: Request timeout in seconds.
            max_tokens: Maximum output tokens.
            temperature: Sampling temperature (0.0-1.0).
            system: Optional system instruction.
            json_mode: Ask the provider for a JSON-only response where supported.

        Returns:
            Generated text. Empty string on failure.

        Raises:
            RateLimitError: The provider was still rate limiting after retries.
        """
        ...

    async def aclose(self) -> None:
        """Release pooled connections."""


# ---------------------------------------------------------------------------
# Provider registry
# ---------------------------------------------------------------------------

_provider_cache: dict[str, LLMProvider] = {}

_GEMINI_PATTERN = re.compile(r"^(gemini|gemma)", re.IGNORECASE)


def _is_gemini_model(model: str) -> bool:
    """Return True if *model* should be routed to the Gemini provider."""
    return bool(_GEMINI_PATTERN.match(model))


def get_provider(model: str) -> LLMProvider:
    """Return (cached) provider for *model*.

    Routing logic:
        - Model names starting with ``gemini`` or ``gemma`` -> GeminiProvider
        - Everything else -> AnthropicProvider
    """
    if _is_gemini_model(model):
        key = "gemini"
        if key not in _provider_cache:
            from .gemini_provider import GeminiProvider
            logger.debug("Creating GeminiProvider for model=%s", model)
            _provider_cache[key] = GeminiProvider()
        return _provider_cache[key]

    key = "anthropic"
    if key not in _provider_cache:
        from .anthropic_provider import AnthropicProvider
        logger.debug("Creating AnthropicProvider for model=%s", model)
        _provider_cache[key] = AnthropicProvider()
    return _provider_cache[key]
