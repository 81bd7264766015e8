"""Tests for the FastAPI labeling service."""
import sys

import pytest
from fastapi.testclient import TestClient

from helpers import RateLimitedExtractor
from vcp.service import app

PROMPT = "A lone astronaut walks across a red desert at golden hour, shot on 35mm film at 24fps."


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("VCP_CACHE_STORAGE", "memory")
    monkeypatch.setenv("VCP_LLM_MODEL", "none")
    with TestClient(app) as c:
        yield c


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "extractor": "none", "cache_entries": 0}


def test_label_spans(client):
    response = client.post("/label-spans", json={"text": PROMPT, "context": {"subject": "lone astronaut"}})
    assert response.status_code == 200
    body = response.json()
    assert [s["quote"] for s in body["spans"]] == ["lone astronaut", "golden hour", "35mm", "24fps"]
    assert body["canonicalText"] == PROMPT
    assert body["isAdversarial"] is False
    assert body["meta"]["cache"]["hit"] is False


def test_repeat_request_hits_cache(client):
    client.post("/label-spans", json={"text": PROMPT})
    body = client.post("/label-spans", json={"text": PROMPT}).json()
    assert body["meta"]["cache"]["hit"] is True
    stats = client.get("/cache/stats").json()
    assert stats["hits"] == 1
    assert stats["size"] == 1


def test_policy_overrides(client):
    body = client.post("/label-spans", json={"text": PROMPT, "max_spans": 1}).json()
    assert len(body["spans"]) == 1
    assert body["meta"]["policy"]["max_spans"] == 1


def test_invalid_request(client):
    response = client.post("/label-spans", json={"text": PROMPT, "min_confidence": 2})
    assert response.status_code == 422


def test_invalidate(client):
    client.post("/label-spans", json={"text": PROMPT})
    response = client.post("/cache/invalidate", json={"text": PROMPT})
    assert response.json() == {"removed": 1}
    assert client.get("/health").json()["cache_entries"] == 0


class TestRateLimitCooldown:
    """The service stops calling the model after a provider rate limit."""

    @pytest.fixture
    def limited(self, monkeypatch):
        monkeypatch.setenv("VCP_CACHE_STORAGE", "memory")
        monkeypatch.setenv("VCP_RATE_LIMIT_COOLDOWN", "60")
        extractor = RateLimitedExtractor()
        monkeypatch.setattr(sys.modules["vcp.service.app"], "create_extractor", lambda *args, **kwargs: extractor)
        return extractor

    def test_repeat_during_cooldown_is_stale(self, limited):
        with TestClient(app) as client:
            first = client.post("/label-spans", json={"text": PROMPT}).json()
            second = client.post("/label-spans", json={"text": PROMPT}).json()
        assert first["meta"]["open_vocab"]["reason"] == "rate_limited"
        assert "status" not in first["meta"]
        assert second["meta"]["status"] == "stale"
        assert second["meta"]["cooldown_remaining"] > 0
        assert [s["quote"] for s in second["spans"]] == [s["quote"] for s in first["spans"]]
        assert limited.calls == 1

    def test_other_text_during_cooldown_uses_deterministic_spans(self, limited):
        with TestClient(app) as client:
            client.post("/label-spans", json={"text": PROMPT})
            body = client.post("/label-spans", json={"text": "Handheld close-up at 24fps."}).json()
        assert body["meta"]["status"] == "stale"
        assert "24fps" in [s["quote"] for s in body["spans"]]
        assert limited.calls == 1
