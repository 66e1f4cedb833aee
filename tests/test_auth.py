from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from chat_gateway import auth
from chat_gateway.auth import AuthUser, FirebaseTokenVerifier, require_user
from chat_gateway.config import Settings


class ClaimsVerifier:
    def __init__(self, claims: dict) -> None:
        self.claims = claims
        self.tokens: list[str] = []

    def verify(self, token: str) -> dict:
        self.tokens.append(token)
        return self.claims


def make_client(verifier=None) -> TestClient:
    app = FastAPI()
    if verifier is not None:
        app.state.token_verifier = verifier

    @app.get("/whoami")
    async def whoami(user: AuthUser = Depends(require_user)) -> dict:
        return {"uid": user.uid, "admin": user.is_admin}

    return TestClient(app)


def test_verified_claims_become_the_user() -> None:
    verifier = ClaimsVerifier({"uid": "abc", "admin": True})
    response = make_client(verifier).get("/whoami", headers={"Authorization": "Bearer tok"})

    assert response.json() == {"uid": "abc", "admin": True}
    assert verifier.tokens == ["tok"]


def test_sub_claim_is_accepted_and_admin_must_be_true() -> None:
    response = make_client(ClaimsVerifier({"sub": "xyz", "admin": "yes"})).get(
        "/whoami", headers={"Authorization": "Bearer tok"}
    )
    assert response.json() == {"uid": "xyz", "admin": False}


def test_token_without_uid_is_rejected() -> None:
    response = make_client(ClaimsVerifier({"email": "a@b"})).get(
        "/whoami", headers={"Authorization": "Bearer tok"}
    )
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_missing_scheme_and_missing_verifier() -> None:
    assert make_client(ClaimsVerifier({"uid": "a"})).get(
        "/whoami", headers={"Authorization": "Basic abc"}
    ).status_code == 401
    assert make_client().get(
        "/whoami", headers={"Authorization": "Bearer tok"}
    ).status_code == 500


def test_firebase_verifier_initialises_app_once(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[tuple] = []
    sentinel_app = object()

    def fake_get_app():
        raise ValueError("no app")

    def fake_initialize_app(credential, options=None):
        created.append((credential, options))
        return sentinel_app

    def fake_verify(token, app=None):
        assert app is sentinel_app
        return {"uid": f"user-for-{token}"}

    monkeypatch.setattr(auth.firebase_admin, "get_app", fake_get_app)
    monkeypatch.setattr(auth.firebase_admin, "initialize_app", fake_initialize_app)
    monkeypatch.setattr(auth.fb_auth, "verify_id_token", fake_verify)
    monkeypatch.setattr(auth.fb_credentials, "ApplicationDefault", lambda: "adc")
    monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)

    verifier = FirebaseTokenVerifier(
        Settings(gemini_api_key="k", firebase_project_id="proj-1")
    )

    assert verifier.verify("t1") == {"uid": "user-for-t1"}
    assert verifier.verify("t2") == {"uid": "user-for-t2"}
    assert created == [("adc", {"projectId": "proj-1"})]
