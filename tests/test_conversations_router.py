from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chat_gateway.repository import ConversationRepository
from chat_gateway.routers.conversations import router
from chat_gateway.services.conversation_cleanup import ConversationCleanupReactor


class DummyVerifier:
    def verify(self, token: str) -> dict:
        return {"uid": token}


class RecordingStorage:
    def __init__(self) -> None:
        self.deleted: list[str] = []

    def delete_blob(self, blob_name: str) -> bool:
        self.deleted.append(blob_name)
        return True


def _auth(uid: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {uid}"}


@pytest.fixture
def client(tmp_path) -> Generator[TestClient, None, None]:
    repository = ConversationRepository(tmp_path / "chat.db")
    storage = RecordingStorage()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await repository.initialize()
        yield
        await repository.close()

    app = FastAPI(lifespan=lifespan)
    app.state.token_verifier = DummyVerifier()
    app.state.conversation_repository = repository
    app.state.cleanup_reactor = ConversationCleanupReactor(repository, storage)
    app.state.test_storage = storage
    app.include_router(router)

    with TestClient(app) as test_client:
        yield test_client


def test_create_list_and_fetch(client: TestClient) -> None:
    created = client.post("/api/conversations", json={"title": "Trip"}, headers=_auth("u1"))
    assert created.status_code == 201
    conversation = created.json()
    assert conversation["title"] == "Trip"
    assert "createdAt" in conversation

    listed = client.get("/api/conversations", headers=_auth("u1")).json()
    assert [c["id"] for c in listed] == [conversation["id"]]
    assert client.get("/api/conversations", headers=_auth("u2")).json() == []

    detail = client.get(f"/api/conversations/{conversation['id']}", headers=_auth("u1"))
    assert detail.status_code == 200
    assert detail.json()["messages"] == []

    other = client.get(f"/api/conversations/{conversation['id']}", headers=_auth("u2"))
    assert other.status_code == 404


def test_persisted_attachments_drop_inline_data_and_file_uri(client: TestClient) -> None:
    conversation = client.post("/api/conversations", json={}, headers=_auth("u1")).json()

    response = client.post(
        f"/api/conversations/{conversation['id']}/messages",
        json={
            "role": "user",
            "text": "see attached",
            "attachments": [
                {
                    "mimeType": "image/png",
                    "data": "aGk=",
                    "fileUri": "https://files/abc",
                    "storageUrl": "https://storage.example/a.png",
                    "name": "a.png",
                }
            ],
        },
        headers=_auth("u1"),
    )

    assert response.status_code == 201
    stored = response.json()
    assert stored["conversationId"] == conversation["id"]
    (attachment,) = stored["attachments"]
    assert attachment["mimeType"] == "image/png"
    assert attachment["storageUrl"] == "https://storage.example/a.png"
    assert attachment["name"] == "a.png"
    assert attachment.get("data") is None
    assert attachment.get("fileUri") is None

    detail = client.get(f"/api/conversations/{conversation['id']}", headers=_auth("u1")).json()
    assert detail["messages"][0]["attachments"][0].get("data") is None
    assert detail["messages"][0]["attachments"][0].get("fileUri") is None


def test_append_to_foreign_conversation_is_not_found(client: TestClient) -> None:
    conversation = client.post("/api/conversations", json={}, headers=_auth("u1")).json()
    response = client.post(
        f"/api/conversations/{conversation['id']}/messages",
        json={"role": "user", "text": "hi"},
        headers=_auth("u2"),
    )
    assert response.status_code == 404


def test_delete_schedules_storage_cleanup(client: TestClient) -> None:
    conversation = client.post("/api/conversations", json={}, headers=_auth("u1")).json()
    path = "users/u1/generated/1_cat.png"
    client.post(
        f"/api/conversations/{conversation['id']}/messages",
        json={
            "role": "model",
            "text": "a cat",
            "imageUrls": [f"https://storage.googleapis.com/bucket/{path}"],
        },
        headers=_auth("u1"),
    )

    foreign = client.delete(f"/api/conversations/{conversation['id']}", headers=_auth("u2"))
    assert foreign.status_code == 404

    response = client.delete(f"/api/conversations/{conversation['id']}", headers=_auth("u1"))
    assert response.status_code == 204
    assert client.app.state.test_storage.deleted == [path]

    again = client.delete(f"/api/conversations/{conversation['id']}", headers=_auth("u1"))
    assert again.status_code == 404
