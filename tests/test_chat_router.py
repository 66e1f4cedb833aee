from __future__ import annotations

import base64
import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from chat_gateway.chat.attachments import AttachmentResolver
from chat_gateway.chat.history import HistoryCompactor
from chat_gateway.chat.intent_router import IntentRouter
from chat_gateway.chat.orchestrator import ChatOrchestrator
from chat_gateway.routers.chat import router

AUTH = {"Authorization": "Bearer good-token"}


class DummyVerifier:
    def verify(self, token: str) -> dict:
        if token != "good-token":
            raise ValueError("bad token")
        return {"uid": "u1"}


class DummyGeminiClient:
    def __init__(self) -> None:
        self.models: list[str] = []

    async def stream_generate(self, model: str, body: dict):
        self.models.append(model)
        yield {"candidates": [{"content": {"parts": [{"text": "Hello!"}]}}]}

    async def generate(self, model: str, body: dict) -> dict:
        return {"candidates": [{"content": {"parts": [{"text": "gemini-3-pro-preview - hard"}]}}]}


def make_client(*, max_inline_bytes: int = 1024) -> TestClient:
    app = FastAPI()
    gemini = DummyGeminiClient()
    app.state.token_verifier = DummyVerifier()
    app.state.chat_orchestrator = ChatOrchestrator(
        gemini,
        router=IntentRouter(gemini, model="router"),
        compactor=HistoryCompactor(None),
        resolver=AttachmentResolver(max_inline_bytes=max_inline_bytes),
    )
    app.include_router(router)
    app.test_gemini = gemini  # type: ignore[attr-defined]
    return TestClient(app)


def test_stream_requires_bearer_token() -> None:
    client = make_client()

    missing = client.post("/api/chat/stream", json={"newMessage": "hi"})
    invalid = client.post(
        "/api/chat/stream",
        json={"newMessage": "hi"},
        headers={"Authorization": "Bearer nope"},
    )

    assert missing.status_code == 401
    assert missing.json()["detail"] == "Missing Authorization Bearer token"
    assert invalid.status_code == 401
    assert invalid.json()["detail"] == "Invalid or expired token"


def test_empty_turn_is_rejected_before_streaming() -> None:
    client = make_client()
    response = client.post("/api/chat/stream", json={"newMessage": "  "}, headers=AUTH)
    assert response.status_code == 400


def test_unknown_model_is_a_validation_error() -> None:
    client = make_client()
    response = client.post(
        "/api/chat/stream",
        json={"newMessage": "hi", "modelId": "gpt-4o"},
        headers=AUTH,
    )
    assert response.status_code == 422


def test_attachment_without_source_is_a_validation_error() -> None:
    client = make_client()
    response = client.post(
        "/api/chat/stream",
        json={
            "newMessage": "hi",
            "attachments": [{"mimeType": "image/png", "storageUrl": "https://s/x.png"}],
        },
        headers=AUTH,
    )
    assert response.status_code == 422


def test_oversized_inline_attachments_are_rejected() -> None:
    client = make_client(max_inline_bytes=8)
    data = base64.b64encode(b"x" * 64).decode()
    response = client.post(
        "/api/chat/stream",
        json={"newMessage": "hi", "attachments": [{"mimeType": "image/png", "data": data}]},
        headers=AUTH,
    )
    assert response.status_code == 413


def test_stream_emits_sse_events() -> None:
    client = make_client()

    with client.stream("POST", "/api/chat/stream", json={"newMessage": "prove it"}, headers=AUTH) as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        lines = [line for line in response.iter_lines() if line.startswith("data:")]

    events = [json.loads(line[len("data:"):].strip()) for line in lines]
    assert events == [
        {"routedModel": {"model": "gemini-3-pro-preview", "reason": "hard"}},
        {"text": "Hello!"},
        {"done": True},
    ]
    assert client.app.test_gemini.models == ["gemini-3-pro-preview"]


def test_models_endpoint_lists_variants() -> None:
    client = make_client()
    response = client.get("/api/chat/models", headers=AUTH)

    assert response.status_code == 200
    payload = response.json()
    assert payload["default"] == "auto"
    ids = [model["id"] for model in payload["models"]]
    assert "research" in ids
    assert "gemini-3-pro-image-preview" in ids
