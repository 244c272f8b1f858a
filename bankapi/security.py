"""Bearer token issuing and verification for the banking API."""
from __future__ import annotations

import base64
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .models import SessionInfo

logger = logging.getLogger("bankapi.security")

TOKEN_KINDS = ("user", "account")


@dataclass(frozen=True)
class TokenSubject:
    id: str
    kind: str


def _build_cipher(secret: Optional[str]) -> Fernet:
    if not secret:
        logger.warning("No token secret configured; issued tokens will not survive a restart")
        return Fernet(Fernet.generate_key())
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


class TokenAuth:
    """Issue Fernet bearer tokens and authenticate requests carrying them."""

    def __init__(self, secret: Optional[str], *, ttl: int = 86400) -> None:
        if ttl < 1:
            raise ValueError("Token lifetime must be positive")
        self._cipher = _build_cipher(secret)
        self._ttl = ttl
        self._bearer = HTTPBearer(auto_error=False)

    @property
    def ttl(self) -> int:
        return self._ttl

    def issue(self, session: SessionInfo, kind: str) -> str:
        if kind not in TOKEN_KINDS:
            raise ValueError(f"Unknown token kind '{kind}'")
        payload = json.dumps({"sub": session.id, "kind": kind}).encode("utf-8")
        return self._cipher.encrypt(payload).decode("utf-8")

    def verify(self, token: str) -> Optional[TokenSubject]:
        try:
            plaintext = self._cipher.decrypt(token.encode("utf-8"), ttl=self._ttl)
            payload = json.loads(plaintext)
        except (InvalidToken, ValueError):
            return None
        if not isinstance(payload, dict):
            return None
        subject = payload.get("sub")
        kind = payload.get("kind")
        if not isinstance(subject, str) or kind not in TOKEN_KINDS:
            return None
        return TokenSubject(id=subject, kind=kind)

    async def __call__(self, request: Request) -> TokenSubject:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        subject = self.verify(credentials.credentials)
        if subject is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token")
        return subject


__all__ = ["TOKEN_KINDS", "TokenAuth", "TokenSubject"]
