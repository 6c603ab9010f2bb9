"""
Oura Connection Router
======================
GET    /api/v1/oura/status               connection flag for the dashboard
GET    /api/v1/oura/oauth/authorize-url  provider consent URL
GET    /api/v1/oura/oauth/callback       provider redirect target
GET    /api/v1/oura/daily                reconciled records for a date range
GET    /api/v1/oura/weekly               weekly averages for a date range
GET    /api/v1/oura/sleep                raw daily sleep rows for a date range
GET    /api/v1/oura/heartrate            raw heart rate samples for a date range
GET    /api/v1/oura/profile              Oura personal info
GET    /api/v1/oura/today                today's reconciled record, or null
DELETE /api/v1/oura/connection           forget the stored token pair

The callback is the only unauthenticated route here: the browser arrives
from Oura without our bearer header. It never exposes Oura tokens; on success
the client gets a short-lived completion credential it can trade for a
session at /api/v1/auth/oauth-session.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Awaitable, Optional, TypeVar
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from app.config import get_settings
from app.core.security import Principal, create_completion_token, require_principal
from app.models.dashboard import (
    AuthorizeUrlResponse,
    ConnectionStatusResponse,
    DailyRecord,
    WeeklyAverage,
)
from app.services.aggregator import weekly_averages
from app.services.oura import (
    ConfigMissingError,
    OAuthExchangeError,
    OuraAPIError,
    OuraTokenError,
    get_oura_client,
)
from app.services.reconciler import DataReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/oura", tags=["oura"])

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _completion_redirect(**params: str) -> RedirectResponse:
    url = f"{get_settings().frontend_url}/oauth/callback?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


def _validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "start_date must not be after end_date", "code": "invalid_range"},
        )


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

@router.get("/status", response_model=ConnectionStatusResponse, summary="Oura connection status")
async def connection_status(
    principal: Principal = Depends(require_principal),
) -> ConnectionStatusResponse:
    if get_oura_client().has_valid_session():
        return ConnectionStatusResponse(connected=True, message="Oura ring connected")
    return ConnectionStatusResponse(connected=False, message="Oura ring not connected")


@router.get(
    "/oauth/authorize-url",
    response_model=AuthorizeUrlResponse,
    summary="Build the Oura consent URL",
    responses={500: {"description": "OAuth client is not configured"}},
)
async def authorize_url(principal: Principal = Depends(require_principal)) -> AuthorizeUrlResponse:
    try:
        url = get_oura_client().build_authorize_url()
    except ConfigMissingError as exc:
        logger.error("Cannot build Oura authorize URL: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Oura OAuth is not configured", "code": "config_missing"},
        ) from exc
    return AuthorizeUrlResponse(auth_url=url)


@router.get(
    "/oauth/callback",
    summary="Oura OAuth redirect target",
    status_code=status.HTTP_302_FOUND,
    response_class=RedirectResponse,
)
async def oauth_callback(
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> RedirectResponse:
    if error:
        logger.warning("Oura authorization was not granted: %s", error)
        return _completion_redirect(error="access_denied")
    if not code:
        return _completion_redirect(error="missing_code")

    try:
        await get_oura_client().exchange_code(code)
    except ConfigMissingError as exc:
        logger.error("Oura code exchange impossible: %s", exc)
        return _completion_redirect(error="config_missing")
    except OAuthExchangeError as exc:
        logger.warning("Oura code exchange failed with status %d", exc.status_code)
        return _completion_redirect(error=exc.reason)

    logger.info("Oura authentication successful")
    return _completion_redirect(temp_token=create_completion_token(get_settings().allowed_email))


@router.delete(
    "/connection",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Disconnect the Oura ring",
)
async def disconnect(principal: Principal = Depends(require_principal)) -> None:
    get_oura_client().disconnect()


# ---------------------------------------------------------------------------
# Range reads
# ---------------------------------------------------------------------------

@router.get("/daily", response_model=list[DailyRecord], summary="Reconciled daily records")
async def daily_records(
    start_date: date = Query(..., description="ISO date, inclusive"),
    end_date: date = Query(..., description="ISO date, inclusive"),
    principal: Principal = Depends(require_principal),
) -> list[DailyRecord]:
    _validate_range(start_date, end_date)
    return await DataReconciler(get_oura_client()).fetch_daily_records(start_date, end_date)


@router.get("/weekly", response_model=list[WeeklyAverage], summary="Weekly averages")
async def weekly(
    start_date: date = Query(..., description="ISO date, inclusive"),
    end_date: date = Query(..., description="ISO date, inclusive"),
    principal: Principal = Depends(require_principal),
) -> list[WeeklyAverage]:
    _validate_range(start_date, end_date)
    records = await DataReconciler(get_oura_client()).fetch_daily_records(start_date, end_date)
    return weekly_averages(records)


# ---------------------------------------------------------------------------
# Raw reads
# ---------------------------------------------------------------------------

async def _upstream(read: Awaitable[T]) -> T:
    try:
        return await read
    except OuraTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Oura ring is not connected", "code": "not_connected"},
        ) from exc
    except ConfigMissingError as exc:
        logger.error("Oura read impossible: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Oura OAuth is not configured", "code": "config_missing"},
        ) from exc
    except (OuraAPIError, httpx.HTTPError) as exc:
        logger.warning("Oura read failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Oura API request failed", "code": "upstream_error"},
        ) from exc


@router.get("/sleep", response_model=list[dict], summary="Raw Oura daily sleep rows")
async def sleep(
    start_date: date = Query(..., description="ISO date, inclusive"),
    end_date: date = Query(..., description="ISO date, inclusive"),
    principal: Principal = Depends(require_principal),
) -> list[dict]:
    _validate_range(start_date, end_date)
    return await _upstream(get_oura_client().fetch_sleep(start_date, end_date))


@router.get("/heartrate", response_model=list[dict], summary="Raw Oura heart rate samples")
async def heart_rate(
    start_date: date = Query(..., description="ISO date, inclusive"),
    end_date: date = Query(..., description="ISO date, inclusive"),
    principal: Principal = Depends(require_principal),
) -> list[dict]:
    _validate_range(start_date, end_date)
    return await _upstream(get_oura_client().fetch_heart_rate(start_date, end_date))


@router.get("/profile", response_model=dict, summary="Oura personal info")
async def profile(principal: Principal = Depends(require_principal)) -> dict:
    return await _upstream(get_oura_client().fetch_personal_info())


@router.get("/today", response_model=Optional[DailyRecord], summary="Today's reconciled record")
async def today(principal: Principal = Depends(require_principal)) -> Optional[DailyRecord]:
    day = date.today()
    records = await DataReconciler(get_oura_client()).fetch_daily_records(day, day)
    return records[0] if records else None
