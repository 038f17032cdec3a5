"""
Opaque per-device participant tokens
"""

import secrets
import string
import time
from typing import Protocol

import structlog
from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, TimestampSigner

logger = structlog.get_logger(__name__)

TOKEN_COOKIE = "participant_token"

_BASE36 = string.digits + string.ascii_lowercase


def generate_token() -> str:
    """Time-based prefix plus a random base-36 suffix"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"student_{int(time.time() * 1000)}_{suffix}"


class TokenStorage(Protocol):
    """Where a device keeps its token"""

    def load(self) -> str | None: ...

    def save(self, token: str) -> None: ...


class ParticipantIdentity:
    """Returns the same token for a device for as long as its storage lasts"""

    def __init__(self, storage: TokenStorage) -> None:
        self.storage = storage

    def get_token(self) -> str:
        try:
            token = self.storage.load()
            if token:
                return token
            token = generate_token()
            self.storage.save(token)
            return token
        except Exception as e:
            # Storage unavailable: the device gets a fresh identity per call
            token = generate_token()
            logger.warning("token_storage_unavailable", error=str(e))
            return token


class CookieTokenStorage:
    """Token storage backed by a signed browser cookie"""

    def __init__(
        self,
        request: Request,
        response: Response,
        secret_key: str,
        max_age: int,
    ) -> None:
        self.request = request
        self.response = response
        self.signer = TimestampSigner(secret_key)
        self.max_age = max_age

    def load(self) -> str | None:
        cookie = self.request.cookies.get(TOKEN_COOKIE)
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie, max_age=self.max_age).decode()
        except (BadSignature, SignatureExpired):
            return None

    def save(self, token: str) -> None:
        self.response.set_cookie(
            key=TOKEN_COOKIE,
            value=self.signer.sign(token).decode(),
            httponly=True,
            secure=False,  # Set to True in production with HTTPS
            samesite="lax",
            max_age=self.max_age,
        )
