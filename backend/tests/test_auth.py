"""
Tests for the session gate and /api/v1/auth
============================================
Covers:
- verify(): valid session, expired, tampered, wrong purpose, wrong subject
- login: forbidden email, bad password, unconfigured password, 2FA issued
- verify-2fa: happy path, wrong code, missing code, expired code
- GET /verify and POST /oauth-session

Run: pytest tests/test_auth.py -v
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, get_settings
from app.core.security import (
    OAUTH_COMPLETION,
    SESSION,
    ExpiredCredentialError,
    InvalidCredentialError,
    TwoFactorStore,
    create_completion_token,
    create_session_token,
    verify,
)

_PASSWORD = "correct-horse-battery"


def _settings(**overrides) -> Settings:
    return Settings(**{"dashboard_password": _PASSWORD, "allowed_email": get_settings().allowed_email, **overrides})


def _client() -> TestClient:
    from app.main import app
    return TestClient(app)


# ---------------------------------------------------------------------------
# TestVerify
# ---------------------------------------------------------------------------

class TestVerify:

    def test_session_token_round_trip(self):
        principal = verify(create_session_token(get_settings().allowed_email))
        assert principal.email == get_settings().allowed_email
        assert principal.role == "admin"

    def test_expired_token(self):
        with patch("app.core.security.get_settings", return_value=_settings(jwt_expire_hours=-1)):
            token = create_session_token(get_settings().allowed_email)
        with pytest.raises(ExpiredCredentialError):
            verify(token)

    def test_tampered_token(self):
        header, payload, signature = create_session_token(get_settings().allowed_email).split(".")
        signature = ("A" if signature[0] != "A" else "B") + signature[1:]
        with pytest.raises(InvalidCredentialError):
            verify(f"{header}.{payload}.{signature}")

    def test_wrong_secret(self):
        with patch("app.core.security.get_settings", return_value=_settings(jwt_secret_key="other")):
            token = create_session_token(get_settings().allowed_email)
        with pytest.raises(InvalidCredentialError):
            verify(token)

    def test_completion_token_is_not_a_session(self):
        token = create_completion_token(get_settings().allowed_email)
        with pytest.raises(InvalidCredentialError):
            verify(token, purpose=SESSION)
        assert verify(token, purpose=OAUTH_COMPLETION).email == get_settings().allowed_email

    def test_other_subject_rejected(self):
        with pytest.raises(InvalidCredentialError):
            verify(create_session_token("intruder@example.com"))


# ---------------------------------------------------------------------------
# TestTwoFactorStore
# ---------------------------------------------------------------------------

class TestTwoFactorStore:

    def test_issue_and_consume(self):
        store = TwoFactorStore()
        code = store.issue("a@b.c", timedelta(minutes=10))

        assert len(code) == 6 and code.isdigit()
        assert store.check("a@b.c", "000000" if code != "000000" else "111111") == "mismatch"
        assert store.check("a@b.c", code) == "ok"
        assert store.check("a@b.c", code) == "missing"

    def test_expired_code(self):
        store = TwoFactorStore()
        code = store.issue("a@b.c", timedelta(seconds=-1))
        assert store.check("a@b.c", code) == "expired"
        assert store.check("a@b.c", code) == "missing"


# ---------------------------------------------------------------------------
# TestLoginFlow
# ---------------------------------------------------------------------------

class TestLoginFlow:

    def test_forbidden_email(self):
        with patch("app.routers.auth.get_settings", return_value=_settings()):
            resp = _client().post("/api/v1/auth/login", json={"email": "someone@else.com", "password": _PASSWORD})

        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "forbidden"

    def test_wrong_password(self):
        with patch("app.routers.auth.get_settings", return_value=_settings()):
            resp = _client().post(
                "/api/v1/auth/login",
                json={"email": get_settings().allowed_email, "password": "wrong-password"},
            )

        assert resp.status_code == 401

    def test_unconfigured_password(self):
        with patch("app.routers.auth.get_settings", return_value=_settings(dashboard_password="")):
            resp = _client().post(
                "/api/v1/auth/login",
                json={"email": get_settings().allowed_email, "password": _PASSWORD},
            )

        assert resp.status_code == 500
        assert resp.json()["detail"]["code"] == "config_missing"

    def test_full_login_with_2fa(self):
        store = TwoFactorStore()
        email = get_settings().allowed_email
        with patch("app.routers.auth.get_settings", return_value=_settings()), \
             patch("app.routers.auth.two_factor_store", store):
            client = _client()
            login = client.post("/api/v1/auth/login", json={"email": email, "password": _PASSWORD})
            code = store._codes[email.lower()][0]
            resp = client.post("/api/v1/auth/verify-2fa", json={"email": email, "code": code})

        assert login.status_code == 200
        assert login.json()["requires2FA"] is True
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"] == {"email": email, "role": "admin"}
        assert verify(body["token"]).email == email

    def test_wrong_2fa_code(self):
        store = TwoFactorStore()
        email = get_settings().allowed_email
        code = store.issue(email.lower(), timedelta(minutes=10))
        wrong = "123456" if code != "123456" else "654321"
        with patch("app.routers.auth.two_factor_store", store):
            resp = _client().post("/api/v1/auth/verify-2fa", json={"email": email, "code": wrong})

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "2fa_mismatch"

    def test_2fa_without_login(self):
        with patch("app.routers.auth.two_factor_store", TwoFactorStore()):
            resp = _client().post(
                "/api/v1/auth/verify-2fa",
                json={"email": get_settings().allowed_email, "code": "123456"},
            )

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "2fa_missing"

    def test_malformed_2fa_code_is_422(self):
        resp = _client().post(
            "/api/v1/auth/verify-2fa",
            json={"email": get_settings().allowed_email, "code": "12ab"},
        )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# TestSessionEndpoints
# ---------------------------------------------------------------------------

class TestSessionEndpoints:

    def test_verify_endpoint(self):
        token = create_session_token(get_settings().allowed_email)
        resp = _client().get("/api/v1/auth/verify", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 200
        assert resp.json() == {"valid": True, "user": {"email": get_settings().allowed_email, "role": "admin"}}

    def test_verify_endpoint_rejects_garbage(self):
        resp = _client().get("/api/v1/auth/verify", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401

    def test_oauth_session_exchange(self):
        temp = create_completion_token(get_settings().allowed_email)
        resp = _client().post("/api/v1/auth/oauth-session", json={"temp_token": temp})

        assert resp.status_code == 200
        assert verify(resp.json()["token"]).email == get_settings().allowed_email

    def test_oauth_session_rejects_session_token(self):
        session = create_session_token(get_settings().allowed_email)
        resp = _client().post("/api/v1/auth/oauth-session", json={"temp_token": session})

        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "auth_invalid"

    def test_oauth_session_expired(self):
        with patch("app.core.security.get_settings", return_value=_settings(oauth_completion_minutes=-1)):
            temp = create_completion_token(get_settings().allowed_email)
        resp = _client().post("/api/v1/auth/oauth-session", json={"temp_token": temp})

        assert resp.status_code == 401
        assert resp.json()["detail"]["code"] == "auth_expired"
