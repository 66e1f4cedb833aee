"""Firebase ID-token authentication for API routes.

Every route depends on :func:`require_user`; the caller's identity always comes
from the verified token, never from the request body.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

import firebase_admin
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as fb_auth
from firebase_admin import credentials as fb_credentials

from .config import Settings

logger = logging.getLogger(__name__)

# auto_error=False so missing headers get the same 401 body as bad tokens
_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    uid: str
    is_admin: bool = False


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        ...


class FirebaseTokenVerifier:
    """Verify ID tokens with a lazily initialised Firebase Admin app."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._app: firebase_admin.App | None = None

    def _get_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app()
        except ValueError:
            options = {}
            if self._settings.firebase_project_id:
                options["projectId"] = self._settings.firebase_project_id
            self._app = firebase_admin.initialize_app(self._credentials(), options or None)
        return self._app

    def _credentials(self) -> fb_credentials.Base:
        path = self._settings.google_application_credentials
        if path is not None and Path(path).expanduser().exists():
            return fb_credentials.Certificate(str(Path(path).expanduser()))
        return fb_credentials.ApplicationDefault()

    def verify(self, token: str) -> dict[str, Any]:
        return fb_auth.verify_id_token(token, app=self._get_app())


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency: resolve the authenticated user or reject with 401."""

    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing Authorization Bearer token")

    verifier: TokenVerifier | None = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Token verifier unavailable",
        )

    try:
        decoded = await asyncio.to_thread(verifier.verify, credentials.credentials)
    except Exception as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise _unauthorized("Invalid or expired token") from exc

    uid = decoded.get("uid") or decoded.get("sub")
    if not isinstance(uid, str) or not uid:
        raise _unauthorized("Invalid token (no uid)")
    return AuthUser(uid=uid, is_admin=decoded.get("admin") is True)


__all__ = ["AuthUser", "FirebaseTokenVerifier", "TokenVerifier", "require_user"]
