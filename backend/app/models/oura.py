"""
Oura API Models
===============
Token shapes for the Oura OAuth2 flow. Daily summary payloads are not
modelled here: their field names drift between API revisions, so the
reconciler reads them through an alias table instead.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

# Validity assumed when the provider omits expires_in on refresh
DEFAULT_EXPIRES_IN_SECONDS = 3600

# Treat a token as expired this long before Oura does
EXPIRY_BUFFER_MS = 5 * 60 * 1000


class OuraTokenResponse(BaseModel):
    """Response from the Oura OAuth /oauth/token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None  # seconds until expiry
    token_type: Optional[str] = None
    scope: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    """The connected Oura account's credentials. Replaced whole, never mutated."""

    access_token: str
    refresh_token: str
    expires_at: int  # epoch milliseconds

    @classmethod
    def from_response(
        cls,
        token: OuraTokenResponse,
        fallback_refresh_token: str = "",
        now_ms: Optional[int] = None,
    ) -> TokenPair:
        now_ms = now_ms if now_ms is not None else _now_ms()
        expires_in = token.expires_in if token.expires_in is not None else DEFAULT_EXPIRES_IN_SECONDS
        return cls(
            access_token=token.access_token,
            refresh_token=token.refresh_token or fallback_refresh_token,
            expires_at=now_ms + expires_in * 1000,
        )

    def is_expired(self, now_ms: Optional[int] = None) -> bool:
        now_ms = now_ms if now_ms is not None else _now_ms()
        return now_ms + EXPIRY_BUFFER_MS >= self.expires_at


def _now_ms() -> int:
    return int(time.time() * 1000)
