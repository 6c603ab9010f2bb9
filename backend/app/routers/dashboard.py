"""
Dashboard Router
================
GET /api/v1/dashboard/overview: today, last 4 weekly averages, insights,
    7-day and 90-day trend data.
GET /api/v1/dashboard/sleep-analysis
GET /api/v1/dashboard/activity-analysis

The overview never fails because of Oura: with no connected ring, or when
the token can't be refreshed, it answers 200 with an empty payload and
connected=false so the app can prompt for a (re)connection.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, status

from app.core.security import Principal, require_principal
from app.models.dashboard import (
    ActivityAnalysisResponse,
    DailyRecord,
    OverviewResponse,
    SleepAnalysisResponse,
)
from app.services.aggregator import (
    activity_insights,
    insights,
    sleep_insights,
    weekly_averages,
)
from app.services.oura import get_oura_client
from app.services.reconciler import DataReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])

OVERVIEW_DAYS = 90
ANALYSIS_DAYS = 30
WEEKS_SHOWN = 4
TREND_DAYS = 7


async def _recent_records(reconciler: DataReconciler, days: int) -> list[DailyRecord]:
    today = date.today()
    return await reconciler.fetch_daily_records(today - timedelta(days=days - 1), today)


@router.get(
    "/overview",
    response_model=OverviewResponse,
    status_code=status.HTTP_200_OK,
    summary="Dashboard overview",
    description=(
        "Most recent day, last four weekly averages, 7-day insights and trend "
        "data. Returns an empty payload with connected=false when no Oura "
        "ring is connected or Oura is unreachable."
    ),
    responses={
        200: {"description": "Overview returned (possibly empty)"},
        401: {"description": "Authentication required"},
    },
)
async def overview(principal: Principal = Depends(require_principal)) -> OverviewResponse:
    client = get_oura_client()
    if not client.has_valid_session():
        return OverviewResponse.disconnected()

    reconciler = DataReconciler(client)
    records = await _recent_records(reconciler, OVERVIEW_DAYS)
    if reconciler.upstream_unavailable:
        logger.warning("Oura unavailable for overview, returning empty payload")
        return OverviewResponse.disconnected()

    today = records[-1] if records else None
    return OverviewResponse(
        today=today,
        weekly_averages=weekly_averages(records)[-WEEKS_SHOWN:],
        insights=insights(records, today),
        trend_data=records[-TREND_DAYS:],
        three_month_trend_data=records,
        connected=True,
    )


@router.get("/sleep-analysis", response_model=SleepAnalysisResponse, summary="30-day sleep analysis")
async def sleep_analysis(principal: Principal = Depends(require_principal)) -> SleepAnalysisResponse:
    records = await _recent_records(DataReconciler(get_oura_client()), ANALYSIS_DAYS)
    return SleepAnalysisResponse(sleep_data=records, insights=sleep_insights(records))


@router.get(
    "/activity-analysis", response_model=ActivityAnalysisResponse, summary="30-day activity analysis"
)
async def activity_analysis(
    principal: Principal = Depends(require_principal),
) -> ActivityAnalysisResponse:
    records = await _recent_records(DataReconciler(get_oura_client()), ANALYSIS_DAYS)
    return ActivityAnalysisResponse(activity_data=records, insights=activity_insights(records))
