"""
Tests for the FastAPI boundary.
Run with: pytest tests/test_main.py
"""

import pytest
from fastapi.testclient import TestClient

from lumai import config as cfg_mod
from lumai import main as main_mod
from lumai.errors import CompletionTimeout
from lumai.models import ChatMessage, CompletionResult


class ScriptedClient:
    configured = True
    model = "stub-model"

    def __init__(self, *replies):
        self.replies = list(replies)

    async def complete(self, messages, temperature=0.2, top_p=0.9, max_tokens=750, functions=None):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return CompletionResult(message=reply)


@pytest.fixture
def app_cfg(tmp_path):
    return {
        "completion": {"api_url": "", "api_key": ""},
        "assistant": {"backoff_seconds": 0},
        "storage": {"backend": "memory"},
        "rate_limit": {"max_requests": 2, "window_seconds": 60},
        "data": {"fixtures_path": str(tmp_path / "absent.yaml")},
        "logging": {"level": "WARNING"},
    }


@pytest.fixture
def client(app_cfg):
    cfg_mod._config = app_cfg
    try:
        with TestClient(main_mod.app) as c:
            yield c
    finally:
        cfg_mod.reset_config()


def _use_model(*replies):
    main_mod.assistant.orchestrator.client = ScriptedClient(*replies)


HEADERS = {"X-User-Id": "u1", "X-User-Name": "Ada"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_missing_identity_is_401(client):
    assert client.get("/api/assistant/conversation").status_code == 401
    resp = client.post("/api/assistant/chat", json={"message": "hi"})
    assert resp.status_code == 401
    assert "error" in resp.json()


def test_unconfigured_provider_is_503(client):
    resp = client.post("/api/assistant/chat", json={"message": "hi"}, headers=HEADERS)
    assert resp.status_code == 503
    assert resp.json() == {"error": "AI provider not configured"}


def test_chat_round_trip(client):
    _use_model(ChatMessage.assistant("Hi Ada!"))
    resp = client.post("/api/assistant/chat", json={"message": "hello"}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"]["content"].endswith("Hi Ada!")
    assert set(body) == {"summary", "message", "messages", "trace", "visualizations"}

    snap = client.get("/api/assistant/conversation", headers=HEADERS).json()
    assert [m["role"] for m in snap["messages"]] == ["user", "assistant"]


def test_empty_message_is_400(client):
    _use_model()
    resp = client.post("/api/assistant/chat", json={"message": "   "}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Message cannot be empty."}


def test_non_string_message_is_400(client):
    _use_model()
    resp = client.post("/api/assistant/chat", json={"message": 42}, headers=HEADERS)
    assert resp.status_code == 400


def test_model_failure_is_502(client):
    _use_model(CompletionTimeout("slow"), CompletionTimeout("slow"))
    resp = client.post("/api/assistant/chat", json={"message": "hi"}, headers=HEADERS)
    assert resp.status_code == 502
    assert resp.json() == {"error": "Assistant is temporarily unavailable."}


def test_rate_limit_is_per_user(client):
    _use_model(*[ChatMessage.assistant("ok") for _ in range(3)])
    for _ in range(2):
        assert client.post("/api/assistant/chat", json={"message": "hi"}, headers=HEADERS).status_code == 200
    limited = client.post("/api/assistant/chat", json={"message": "hi"}, headers=HEADERS)
    assert limited.status_code == 429
    assert limited.json()["details"]["retry_after"] > 0

    other = client.post("/api/assistant/chat", json={"message": "hi"}, headers={"X-User-Id": "u2"})
    assert other.status_code == 200
