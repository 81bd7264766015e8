"""Tests for the HTTP LLM providers and the extractor factory."""
import json

import httpx
import pytest

from vcp.errors import RateLimitError
from vcp.extraction.open_vocab import (
    LLMSpanExtractor,
    NullSpanExtractor,
    StaticSpanExtractor,
    create_extractor,
    load_labels,
)
from vcp.shared.llm import AnthropicProvider, GeminiProvider, base


def mock_client(*responses, seen=None):
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return queue.pop(0)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAnthropicProvider:
    """Tests for AnthropicProvider."""

    async def test_text_blocks_joined(self):
        seen = []
        client = mock_client(httpx.Response(200, json={
            "content": [{"type": "text", "text": '{"spans": []}'}, {"type": "tool_use", "id": "x"}],
            "usage": {"input_tokens": 10, "output_tokens": 5},
        }), seen=seen)
        provider = AnthropicProvider(api_key="k", client=client, max_retries=1)
        text = await provider.generate("label this", model="sonnet", system="be terse")
        assert text == '{"spans": []}'
        assert seen[0].headers["x-api-key"] == "k"
        body = json.loads(seen[0].content)
        assert body["model"] == "claude-sonnet-4-5-20250929"
        assert body["system"] == "be terse"

    async def test_rate_limit_raises_with_retry_after(self):
        client = mock_client(httpx.Response(429, headers={"retry-after": "7"}))
        provider = AnthropicProvider(api_key="k", client=client, max_retries=1)
        with pytest.raises(RateLimitError) as exc_info:
            await provider.generate("hi")
        assert exc_info.value.retry_after == 7.0

    async def test_transient_error_retried(self):
        client = mock_client(
            httpx.Response(503, headers={"retry-after": "0"}),
            httpx.Response(200, json={"content": [{"type": "text", "text": "ok"}]}),
        )
        provider = AnthropicProvider(api_key="k", client=client, max_retries=2)
        assert await provider.generate("hi") == "ok"

    async def test_client_error_returns_empty(self):
        client = mock_client(httpx.Response(400, text="bad request"))
        provider = AnthropicProvider(api_key="k", client=client, max_retries=1)
        assert await provider.generate("hi") == ""

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            AnthropicProvider()


class TestGeminiProvider:
    """Tests for GeminiProvider."""

    async def test_generate_content(self):
        seen = []
        client = mock_client(httpx.Response(200, json={
            "candidates": [{"content": {"parts": [
                {"text": "thinking...", "thought": True},
                {"text": '{"spans": []}'},
            ]}}],
        }), seen=seen)
        provider = GeminiProvider(api_key="g", client=client, max_retries=1)
        text = await provider.generate("hi", model="gemini-flash", json_mode=True)
        assert text == '{"spans": []}'
        assert seen[0].url.path.endswith("/gemini-2.5-flash:generateContent")
        assert seen[0].headers["x-goog-api-key"] == "g"
        body = json.loads(seen[0].content)
        assert body["generationConfig"]["responseMimeType"] == "application/json"

    async def test_rate_limit(self):
        client = mock_client(httpx.Response(429))
        provider = GeminiProvider(api_key="g", client=client, max_retries=1)
        with pytest.raises(RateLimitError) as exc_info:
            await provider.generate("hi")
        assert exc_info.value.retry_after is None

    async def test_connection_error_retried(self, monkeypatch):
        monkeypatch.setattr("vcp.shared.llm.http_provider.calculate_backoff", lambda attempt, retry_after: 0.0)
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GeminiProvider(api_key="g", client=client, max_retries=2)
        assert await provider.generate("hi") == "ok"
        assert len(calls) == 2

    async def test_empty_candidates_returns_empty(self):
        client = mock_client(httpx.Response(200, json={"candidates": []}))
        provider = GeminiProvider(api_key="g", client=client, max_retries=1)
        assert await provider.generate("hi") == ""

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(RuntimeError):
            GeminiProvider()


class TestCreateExtractor:
    """Tests for create_extractor() and load_labels()."""

    def test_none_model(self):
        assert isinstance(create_extractor("none"), NullSpanExtractor)
        assert isinstance(create_extractor(None), NullSpanExtractor)

    def test_labels_file(self, tmp_path):
        path = tmp_path / "labels.json"
        path.write_text(json.dumps({"A red desert": [{"text": "red desert", "role": "location"}]}))
        extractor = create_extractor("sonnet", labels_path=path)
        assert isinstance(extractor, StaticSpanExtractor)
        assert extractor.name == "static:labels.json"

    def test_labels_must_be_object(self, tmp_path):
        path = tmp_path / "labels.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            load_labels(path)

    def test_model_routes_to_provider(self, monkeypatch):
        monkeypatch.setattr(base, "_provider_cache", {})
        monkeypatch.setenv("GEMINI_API_KEY", "g")
        extractor = create_extractor("gemini-2.5-flash", chunk_chars=500)
        assert isinstance(extractor, LLMSpanExtractor)
        assert extractor.name == "gemini:gemini-2.5-flash"
        assert extractor.chunk_chars == 500
