"""
Dashboard Schemas
=================
Pydantic models for reconciled daily records, weekly averages, insights,
and the dashboard API responses built from them.
"""

from __future__ import annotations

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------

class DailyRecord(BaseModel):
    """One calendar day of Oura data, merged from all four categories.

    Missing values are 0, never null. Sleep durations are minutes.
    """

    day: date
    hrv: float = 0
    sleep_score: int = 0
    activity_score: int = 0
    readiness_score: int = 0
    deep_sleep_duration: int = 0
    rem_sleep_duration: int = 0
    light_sleep_duration: int = 0
    total_sleep_duration: int = 0
    sleep_efficiency: int = 0
    resting_heart_rate: float = 0
    steps: int = 0
    calories_active: float = 0
    calories_total: float = 0
    average_heart_rate: float = 0
    max_heart_rate: float = 0


class WeeklyAverage(BaseModel):
    """Per-metric means over the days present in one Sunday-start week."""

    week: date
    hrv_avg: float
    sleep_score_avg: float
    activity_score_avg: float
    readiness_score_avg: float
    deep_sleep_avg: float
    rem_sleep_avg: float
    light_sleep_avg: float
    total_sleep_avg: float
    sleep_efficiency_avg: float
    resting_heart_rate_avg: float
    steps_avg: float
    calories_active_avg: float
    calories_total_avg: float


class Insight(BaseModel):
    """Today's value against the trailing 7-record average."""

    current: float
    average: float
    trend: Literal["improving", "declining"]


class MetricAdvice(BaseModel):
    average: float
    recommendation: str


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OverviewResponse(_CamelModel):
    """GET /api/v1/dashboard/overview payload."""

    today: Optional[DailyRecord] = None
    weekly_averages: list[WeeklyAverage] = []
    insights: dict[str, Insight] = {}
    trend_data: list[DailyRecord] = []
    three_month_trend_data: list[DailyRecord] = []
    connected: bool = False

    @classmethod
    def disconnected(cls) -> OverviewResponse:
        return cls(connected=False)


class SleepAnalysisResponse(_CamelModel):
    sleep_data: list[DailyRecord] = []
    insights: dict[str, MetricAdvice] = {}


class ActivityAnalysisResponse(_CamelModel):
    activity_data: list[DailyRecord] = []
    insights: dict[str, MetricAdvice] = {}


class ConnectionStatusResponse(BaseModel):
    connected: bool
    message: str


class AuthorizeUrlResponse(_CamelModel):
    auth_url: str
