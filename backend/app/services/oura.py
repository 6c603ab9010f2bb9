"""
Oura Ring Service
=================
OAuth2 token lifecycle and authenticated reads against the Oura REST API v2.

Responsibilities:
- exchange_code(): trade an OAuth auth code for an access + refresh token pair
- refresh(): use the stored refresh token to obtain a new pair
- authenticated_get(): GET with Bearer auth, refreshing proactively when the
  pair has expired and once more if Oura still answers 401
- has_valid_session(): coarse "ring ever connected" flag for feature gating
- fetch_sleep() / fetch_heart_rate() / fetch_personal_info(): raw reads

Tokens live in the injected TokenStore only. They are never logged and
never returned to the dashboard client.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from app.config import Settings, get_settings
from app.models.oura import OuraTokenResponse, TokenPair
from app.services.token_store import TokenStore, get_token_store

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class OuraAPIError(Exception):
    """Non-2xx response from Oura API."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Oura API error {status_code}: {body}")


class OAuthExchangeError(OuraAPIError):
    """The token endpoint rejected an authorization code."""

    _REASONS = {400: "invalid_request", 401: "unauthorized", 403: "forbidden"}

    @property
    def reason(self) -> str:
        return self._REASONS.get(self.status_code, "unknown")


class OuraTokenError(Exception):
    """No usable token pair is stored."""


class NoSessionError(OuraTokenError):
    """The ring has never been connected, or was disconnected."""


class NoRefreshTokenError(OuraTokenError):
    """A refresh was requested but no refresh token is stored."""


class ConfigMissingError(Exception):
    """OAuth client id or secret is not configured."""


# ---------------------------------------------------------------------------
# OuraClient
# ---------------------------------------------------------------------------


class OuraClient:
    """Makes authenticated requests to the Oura REST API v2."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: TokenStore | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or get_token_store()
        self._refresh_lock = asyncio.Lock()

    # ---- OAuth -----------------------------------------------------------

    def build_authorize_url(self, state: Optional[str] = None) -> str:
        """Provider consent URL for the configured client and fixed scopes."""
        if not self._settings.oura_client_id:
            raise ConfigMissingError("OURA_CLIENT_ID is not configured")
        params = {
            "response_type": "code",
            "client_id": self._settings.oura_client_id,
            "redirect_uri": self._settings.oura_redirect_uri,
            "scope": self._settings.oura_scopes,
        }
        if state:
            params["state"] = state
        return f"{self._settings.oura_authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenPair:
        """
        Trade an OAuth authorisation code for access + refresh tokens.
        Replaces whatever pair the store held.
        """
        self._require_client_credentials()
        response = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self._settings.oura_client_id,
                "client_secret": self._settings.oura_client_secret,
                "redirect_uri": self._settings.oura_redirect_uri,
            }
        )
        if not response.is_success:
            raise OAuthExchangeError(response.status_code, response.text)

        pair = TokenPair.from_response(OuraTokenResponse(**response.json()))
        self._store.set(pair)
        logger.info("Obtained Oura access token")
        return pair

    async def refresh(self, stale: Optional[TokenPair] = None) -> str:
        """
        Use the stored refresh token to obtain a new pair.
        Returns the access token now in the store.
        Raises NoRefreshTokenError if nothing is stored.

        *stale* is the pair the caller found unusable. Refreshes on this
        client run one at a time; if the store no longer holds *stale* once
        it is our turn, another refresh already replaced it and its access
        token is returned without calling Oura again.
        """
        if stale is None:
            stale = self._store.get()

        async with self._refresh_lock:
            current = self._store.get()
            if current is None or not current.refresh_token:
                raise NoRefreshTokenError("No Oura refresh token available")
            if stale is not None and current is not stale:
                logger.debug("Oura token already refreshed by a concurrent request")
                return current.access_token
            return await self._refresh_pair(current)

    async def _refresh_pair(self, current: TokenPair) -> str:
        self._require_client_credentials()
        response = await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": current.refresh_token,
                "client_id": self._settings.oura_client_id,
                "client_secret": self._settings.oura_client_secret,
            }
        )
        if not response.is_success:
            # A refresh from another client may have spent this refresh token
            latest = self._store.get()
            if latest is not None and latest is not current:
                logger.debug("Oura refresh rejected after a concurrent refresh, keeping newer pair")
                return latest.access_token
            raise OuraAPIError(response.status_code, response.text)

        new_pair = TokenPair.from_response(
            OuraTokenResponse(**response.json()),
            fallback_refresh_token=current.refresh_token,
        )
        if not self._store.compare_and_swap(current, new_pair):
            # A concurrent request refreshed first; keep its pair.
            winner = self._store.get()
            if winner is None:
                raise NoSessionError("Oura ring was disconnected during token refresh")
            logger.debug("Concurrent Oura token refresh detected, keeping newer pair")
            return winner.access_token

        logger.info("Refreshed Oura access token")
        return new_pair.access_token

    def has_valid_session(self) -> bool:
        pair = self._store.get()
        return bool(pair and pair.access_token and pair.refresh_token)

    def disconnect(self) -> None:
        self._store.clear()
        logger.info("Oura connection cleared")

    # ---- Reads -----------------------------------------------------------

    async def authenticated_get(self, path: str, params: Optional[dict] = None) -> Any:
        """
        GET *path* with Bearer auth and return the decoded JSON body.

        Refreshes before sending if the pair has expired. A 401 triggers
        exactly one refresh and one retry; a second 401 raises OuraAPIError.
        """
        pair = self._current_pair()
        if pair.is_expired():
            await self.refresh(pair)
            pair = self._current_pair()

        response = await self._get(path, params, pair.access_token)
        if response.status_code == 401:
            logger.info("Oura returned 401 for %s, refreshing token and retrying", path)
            await self.refresh(pair)
            response = await self._get(path, params, self._current_pair().access_token)

        if not response.is_success:
            raise OuraAPIError(response.status_code, response.text)
        return response.json()

    async def fetch_sleep(self, start_date: date, end_date: date) -> list[dict]:
        """GET /v2/usercollection/daily_sleep rows for the given date range."""
        data = await self.authenticated_get(
            "/v2/usercollection/daily_sleep",
            params={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        return data.get("data", [])

    async def fetch_heart_rate(self, start_date: date, end_date: date) -> list[dict]:
        """
        GET /v2/usercollection/heartrate samples for the given date range.
        The endpoint takes datetimes; the range covers whole UTC days.
        """
        data = await self.authenticated_get(
            "/v2/usercollection/heartrate",
            params={
                "start_datetime": f"{start_date.isoformat()}T00:00:00+00:00",
                "end_datetime": f"{(end_date + timedelta(days=1)).isoformat()}T00:00:00+00:00",
            },
        )
        return data.get("data", [])

    async def fetch_personal_info(self) -> dict:
        """GET /v2/usercollection/personal_info."""
        return await self.authenticated_get("/v2/usercollection/personal_info")

    def _current_pair(self) -> TokenPair:
        pair = self._store.get()
        if pair is None:
            raise NoSessionError("Oura ring is not connected")
        return pair

    # ---- HTTP ------------------------------------------------------------

    async def _get(self, path: str, params: Optional[dict], access_token: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._settings.oura_timeout_seconds) as client:
            return await client.get(
                f"{self._settings.oura_api_base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )

    async def _post_token(self, form: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._settings.oura_timeout_seconds) as client:
            return await client.post(self._settings.oura_token_url, data=form)

    def _require_client_credentials(self) -> None:
        if not self._settings.oura_client_id or not self._settings.oura_client_secret:
            raise ConfigMissingError("OURA_CLIENT_ID and OURA_CLIENT_SECRET must be configured")


def get_oura_client() -> OuraClient:
    return OuraClient()
