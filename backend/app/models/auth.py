"""
Auth Schemas
============
Request/response bodies for login, 2FA and the post-OAuth session handoff.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6)


class LoginResponse(BaseModel):
    message: str
    requires2FA: bool = True


class VerifyTwoFactorRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    code: str = Field(..., pattern=r"^\d{6}$")


class OAuthSessionRequest(BaseModel):
    temp_token: str = Field(..., min_length=1)


class UserInfo(BaseModel):
    email: str
    role: str


class SessionResponse(BaseModel):
    success: bool = True
    token: str
    user: UserInfo


class VerifyResponse(BaseModel):
    valid: bool
    user: UserInfo
