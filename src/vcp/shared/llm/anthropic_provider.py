"""Anthropic (Claude) provider over the Messages API.

Authentication: ``ANTHROPIC_API_KEY`` environment variable (or the
``api_key`` argument).
"""

from __future__ import annotations

from typing import Any

from .http_provider import HttpProvider

MODEL_MAP: dict[str, str] = {
    "claude-haiku": "claude-3-5-haiku-latest",
    "claude-3-5-haiku": "claude-3-5-haiku-latest",
    "claude-sonnet": "claude-sonnet-4-5-20250929",
    "claude-sonnet-4": "claude-sonnet-4-20250514",
    "claude-sonnet-4-5": "claude-sonnet-4-5-20250929",
    "claude-opus": "claude-opus-4-5-20251101",
    "opus": "claude-opus-4-5-20251101",
    "haiku": "claude-3-5-haiku-latest",
    "sonnet": "claude-sonnet-4-5-20250929",
}


class AnthropicProvider(HttpProvider):
    """Claude over the Messages API; 529 (overloaded) is retried too.

    ``json_mode`` has no API switch here; the prompt carries the JSON
    instruction.
    """

    API_ENDPOINT = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    label = "anthropic"
    default_model = "sonnet"
    key_env = ("ANTHROPIC_API_KEY",)
    model_map = MODEL_MAP
    retryable_status = frozenset({429, 500, 502, 503, 529})

    def endpoint(self, model: str) -> str:
        return self.API_ENDPOINT

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json",
        }

    def build_request(self, prompt, model, *, max_tokens, temperature, system, json_mode) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            body["system"] = system
        return body

    def extract_text(self, data: dict[str, Any]) -> str:
        blocks = [b.get("text", "") for b in data.get("content", []) if b.get("type") == "text"]
        return "\n".join(blocks).strip()

    def token_usage(self, data: dict[str, Any]) -> tuple[int, int]:
        usage = data.get("usage", {})
        return usage.get("input_tokens", 0), usage.get("output_tokens", 0)
