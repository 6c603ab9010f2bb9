"""
Auth Router
===========
POST /api/v1/auth/login          password check, then a 2FA code is issued
POST /api/v1/auth/verify-2fa     exchange the 2FA code for a session token
GET  /api/v1/auth/verify         validate the current session token
POST /api/v1/auth/oauth-session  exchange the post-OAuth completion
                                 credential for a session token

Only ALLOWED_EMAIL may sign in. The 2FA code is written to the server log;
delivering it by email is left to the deployment.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from app.config import get_settings
from app.core.security import (
    OAUTH_COMPLETION,
    ExpiredCredentialError,
    InvalidCredentialError,
    Principal,
    create_session_token,
    require_principal,
    two_factor_store,
    verify,
)
from app.models.auth import (
    LoginRequest,
    LoginResponse,
    OAuthSessionRequest,
    SessionResponse,
    UserInfo,
    VerifyResponse,
    VerifyTwoFactorRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

_TWO_FACTOR_ERRORS = {
    "missing": "No 2FA code found. Please login again.",
    "expired": "2FA code expired. Please login again.",
    "mismatch": "Invalid 2FA code",
}


def _session_for(email: str) -> SessionResponse:
    principal = Principal(email=email)
    return SessionResponse(
        token=create_session_token(principal.email),
        user=UserInfo(email=principal.email, role=principal.role),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Start a login",
    responses={
        200: {"description": "Password accepted, 2FA code issued"},
        401: {"description": "Invalid credentials"},
        403: {"description": "Email is not the authorized user"},
    },
)
async def login(body: LoginRequest) -> LoginResponse:
    settings = get_settings()
    email = body.email.strip().lower()

    if email != settings.allowed_email.lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Access denied. Only authorized users can access this dashboard.",
                "code": "forbidden",
            },
        )

    if not settings.dashboard_password:
        logger.error("DASHBOARD_PASSWORD is not configured, refusing login")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Login is not configured", "code": "config_missing"},
        )

    if not secrets.compare_digest(body.password, settings.dashboard_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid credentials", "code": "auth_invalid"},
        )

    code = two_factor_store.issue(email, timedelta(minutes=settings.two_factor_ttl_minutes))
    logger.info("2FA code for %s: %s", email, code)
    return LoginResponse(message="2FA code sent to your email")


@router.post(
    "/verify-2fa",
    response_model=SessionResponse,
    summary="Complete a login with the 2FA code",
    responses={
        200: {"description": "Session token issued"},
        400: {"description": "Code missing, expired or wrong"},
    },
)
async def verify_two_factor(body: VerifyTwoFactorRequest) -> SessionResponse:
    email = body.email.strip().lower()
    outcome = two_factor_store.check(email, body.code)
    if outcome != "ok":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": _TWO_FACTOR_ERRORS[outcome], "code": f"2fa_{outcome}"},
        )
    logger.info("Login completed for %s", email)
    return _session_for(get_settings().allowed_email)


@router.get("/verify", response_model=VerifyResponse, summary="Validate the session token")
async def verify_session(principal: Principal = Depends(require_principal)) -> VerifyResponse:
    return VerifyResponse(valid=True, user=UserInfo(email=principal.email, role=principal.role))


@router.post(
    "/oauth-session",
    response_model=SessionResponse,
    summary="Exchange the OAuth completion credential for a session",
    responses={401: {"description": "Completion credential invalid or expired"}},
)
async def oauth_session(body: OAuthSessionRequest) -> SessionResponse:
    try:
        principal = verify(body.temp_token, purpose=OAUTH_COMPLETION)
    except ExpiredCredentialError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Completion credential has expired", "code": "auth_expired"},
        ) from exc
    except InvalidCredentialError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid completion credential", "code": "auth_invalid"},
        ) from exc
    return _session_for(principal.email)
