"""Shared request/retry loop for JSON-over-HTTPS model APIs.

Subclasses describe one API (endpoint, headers, request body, where the text
lives in the response); ``HttpProvider.generate`` owns retries, backoff and
rate-limit reporting so every provider logs the same ``[name] RETRY ...``
lines.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from abc import abstractmethod
from typing import Any

import httpx

from vcp.errors import RateLimitError

from .base import DEFAULT_MAX_RETRIES, LLMProvider, calculate_backoff, parse_retry_after

_TRANSPORT_ERRORS = (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError, OSError)


class HttpProvider(LLMProvider):
    """Base for providers that POST a JSON body and read a JSON reply."""

    label = "http"
    default_model = ""
    key_env: tuple[str, ...] = ()
    model_map: dict[str, str] = {}
    retryable_status = frozenset({429, 500, 502, 503})

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._api_key = (api_key or self._key_from_env()).strip()
        if not self._api_key:
            raise RuntimeError(
                f"{self.key_env[0]} is not set.\n"
                f"Export it or pass api_key= to {type(self).__name__}."
            )
        self._client = client
        self._owns_client = client is None
        self.max_retries = max(1, max_retries)
        self.log = logging.getLogger(f"vcp.shared.llm.{self.label}")

    @property
    def name(self) -> str:
        return self.label

    def _key_from_env(self) -> str:
        for var in self.key_env:
            if os.environ.get(var):
                return os.environ[var]
        return ""

    def resolve_model(self, model: str | None) -> str:
        model = model or self.default_model
        resolved = self.model_map.get(model, model)
        if resolved != model:
            self.log.debug("Model alias: %s -> %s", model, resolved)
        return resolved

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    def endpoint(self, model: str) -> str: ...

    @abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abstractmethod
    def build_request(
        self, prompt: str, model: str, *, max_tokens: int, temperature: float,
        system: str | None, json_mode: bool,
    ) -> dict[str, Any]: ...

    @abstractmethod
    def extract_text(self, data: dict[str, Any]) -> str: ...

    def token_usage(self, data: dict[str, Any]) -> tuple[int, int]:
        return 0, 0

    async def generate(
        self,
        prompt: str,
        model: str | None = None,
        timeout: int = 90,
        max_tokens: int = 2000,
        temperature: float = 0.0,
        system: str | None = None,
        json_mode: bool = False,
    ) -> str:
        resolved = self.resolve_model(model)
        body = self.build_request(
            prompt, resolved, max_tokens=max_tokens, temperature=temperature,
            system=system, json_mode=json_mode,
        )
        self.log.debug("[%s] model=%s prompt_len=%d json=%s", self.label, resolved, len(prompt), json_mode)

        started = time.time()
        data = await self._post(self.endpoint(resolved), body, timeout, resolved, started)
        if data is None:
            return ""
        text = self.extract_text(data)
        if not text:
            self.log.warning("[%s] Unexpected response: %s", self.label, json.dumps(data)[:500])
            return ""
        tokens_in, tokens_out = self.token_usage(data)
        self.log.debug(
            "[%s] OK | model=%s | in=%d out=%d | %.1fs",
            self.label, resolved, tokens_in, tokens_out, time.time() - started,
        )
        return text

    async def _post(
        self, url: str, body: dict[str, Any], timeout: int, model: str, started: float,
    ) -> dict[str, Any] | None:
        """POST with retries. None means a non-retryable failure (logged)."""
        client = self._get_client()
        last = self.max_retries - 1
        for attempt in range(self.max_retries):
            try:
                response = await client.post(url, json=body, headers=self.headers(), timeout=timeout)
            except _TRANSPORT_ERRORS as e:
                if attempt == last:
                    self.log.error(
                        "[%s] FAILED %s after %d attempts | model=%s | error=%s",
                        self.label, type(e).__name__, self.max_retries, model, e,
                    )
                    return None
                await self._backoff(attempt, None, type(e).__name__, model, started)
                continue

            if response.status_code in self.retryable_status:
                retry_after = parse_retry_after(response)
                if attempt == last:
                    if response.status_code == 429:
                        self.log.warning(
                            "[%s] RATE LIMITED after %d attempts | model=%s",
                            self.label, self.max_retries, model,
                        )
                        raise RateLimitError(f"{self.label} rate limit", retry_after=retry_after)
                    self.log.error("[%s] EXHAUSTED %d retries | model=%s", self.label, self.max_retries, model)
                    return None
                await self._backoff(attempt, retry_after, str(response.status_code), model, started)
                continue

            if not response.is_success:
                self.log.error(
                    "[%s] FAILED %d | model=%s | elapsed=%.1fs | %s",
                    self.label, response.status_code, model, time.time() - started, response.text[:300],
                )
                return None

            if attempt > 0:
                self.log.info(
                    "[%s] RECOVERED after %d retries | model=%s | total=%.1fs",
                    self.label, attempt, model, time.time() - started,
                )
            return response.json()
        return None

    async def _backoff(self, attempt: int, retry_after: float | None, cause: str, model: str,
                       started: float) -> None:
        wait = calculate_backoff(attempt, retry_after)
        self.log.info(
            "[%s] RETRY %s | attempt=%d/%d | model=%s | wait=%.1fs | elapsed=%.1fs",
            self.label, cause, attempt + 1, self.max_retries, model, wait, time.time() - started,
        )
        await asyncio.sleep(wait)
