"""Google Gemini provider over the Generative Language API.

Authentication: ``GEMINI_API_KEY`` (or ``GOOGLE_API_KEY``) environment
variable, or the ``api_key`` argument.

``json_mode=True`` sets ``generationConfig.responseMimeType`` to
``application/json``, Gemini's native JSON response mode.
"""

from __future__ import annotations

from typing import Any

from .http_provider import HttpProvider

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

MODEL_MAP: dict[str, str] = {
    "gemini-pro": "gemini-2.5-pro",
    "gemini-flash": "gemini-2.5-flash",
    "gemini-flash-lite": "gemini-2.5-flash-lite",
}


class GeminiProvider(HttpProvider):
    label = "gemini"
    default_model = "gemini-2.5-flash"
    key_env = ("GEMINI_API_KEY", "GOOGLE_API_KEY")
    model_map = MODEL_MAP

    def endpoint(self, model: str) -> str:
        return f"{API_BASE}/{model}:generateContent"

    def headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    def build_request(self, prompt, model, *, max_tokens, temperature, system, json_mode) -> dict[str, Any]:
        config: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_tokens}
        if json_mode:
            config["responseMimeType"] = "application/json"
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    def extract_text(self, data: dict[str, Any]) -> str:
        # only the first candidate; thinking parts are skipped
        candidates = data.get("candidates") or [{}]
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(p["text"] for p in parts if "text" in p and not p.get("thought")).strip()

    def token_usage(self, data: dict[str, Any]) -> tuple[int, int]:
        usage = data.get("usageMetadata", {})
        return usage.get("promptTokenCount", 0), usage.get("candidatesTokenCount", 0)
