"""
Session Gate
============
Issues and verifies the bearer credentials that gate the dashboard.

There is exactly one principal, the configured ALLOWED_EMAIL. Two kinds of
signed JWT are issued:

- session:           returned after 2FA, sent as `Authorization: Bearer ...`
- oauth_completion:  handed to the client by the Oura callback redirect,
                     valid for a few minutes, exchangeable for a session

The 2FA codes themselves live in process memory only.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from app.config import get_settings

logger = logging.getLogger(__name__)

SESSION = "session"
OAUTH_COMPLETION = "oauth_completion"
ROLE = "admin"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class InvalidCredentialError(Exception):
    """Credential is malformed, has a bad signature or the wrong purpose."""


class ExpiredCredentialError(InvalidCredentialError):
    """Credential was valid but its exp has passed."""


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class Principal(BaseModel):
    email: str
    role: str = ROLE


def _encode(subject: str, purpose: str, lifetime: timedelta) -> str:
    settings = get_settings()
    payload = {
        "sub": subject,
        "role": ROLE,
        "typ": purpose,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_session_token(email: str) -> str:
    return _encode(email, SESSION, timedelta(hours=get_settings().jwt_expire_hours))


def create_completion_token(email: str) -> str:
    """Short-lived credential carried by the post-OAuth redirect."""
    return _encode(email, OAUTH_COMPLETION, timedelta(minutes=get_settings().oauth_completion_minutes))


def verify(token: str, purpose: str = SESSION) -> Principal:
    """
    Decode *token* and return its principal.

    Raises ExpiredCredentialError if exp has passed, InvalidCredentialError
    for anything else wrong, including a token issued for another purpose
    or for someone other than the allowed principal.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise ExpiredCredentialError("Credential has expired") from exc
    except JWTError as exc:
        raise InvalidCredentialError(f"Invalid credential: {exc}") from exc

    if payload.get("typ") != purpose:
        raise InvalidCredentialError("Credential issued for a different purpose")
    subject = payload.get("sub")
    if not subject or subject != settings.allowed_email:
        raise InvalidCredentialError("Credential subject is not authorized")
    return Principal(email=subject, role=payload.get("role", ROLE))


def require_principal(
    authorization: Optional[str] = Header(None, description="Bearer session token"),
) -> Principal:
    """FastAPI dependency: verify the bearer header or raise 401."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Missing or invalid authorization header", "code": "auth_required"},
        )

    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Empty bearer token", "code": "auth_required"},
        )

    try:
        return verify(token)
    except ExpiredCredentialError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Session has expired", "code": "auth_expired"},
        ) from exc
    except InvalidCredentialError as exc:
        logger.warning("Session token verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid or expired token", "code": "auth_invalid"},
        ) from exc


# ---------------------------------------------------------------------------
# Two-factor codes
# ---------------------------------------------------------------------------


class TwoFactorStore:
    """One pending 6-digit code per email, expiring after a TTL."""

    def __init__(self) -> None:
        self._codes: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def issue(self, email: str, ttl: timedelta) -> str:
        code = f"{secrets.randbelow(900000) + 100000}"
        with self._lock:
            self._codes[email] = (code, time.monotonic() + ttl.total_seconds())
        return code

    def check(self, email: str, code: str) -> str:
        """
        Returns "ok", "missing", "expired" or "mismatch". A matching or
        expired code is consumed; a mismatch leaves it pending.
        """
        with self._lock:
            entry = self._codes.get(email)
            if entry is None:
                return "missing"
            stored, expires = entry
            if time.monotonic() > expires:
                del self._codes[email]
                return "expired"
            if not secrets.compare_digest(stored, code):
                return "mismatch"
            del self._codes[email]
            return "ok"


two_factor_store = TwoFactorStore()
