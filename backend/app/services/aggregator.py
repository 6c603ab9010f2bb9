"""
Aggregation Service
===================
Derives dashboard summaries from reconciled DailyRecords:

- weekly_averages(): per-metric means per Sunday-start calendar week
- insights(): today vs. the trailing 7-record average, with a trend label
- sleep_insights() / activity_insights(): 7-record averages with a short
  recommendation per metric

Everything is recomputed per request; nothing is stored.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

import pandas as pd

from app.models.dashboard import DailyRecord, Insight, MetricAdvice, WeeklyAverage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TRAILING_WINDOW = 7

# DailyRecord field -> WeeklyAverage field
WEEKLY_FIELDS = {
    "hrv": "hrv_avg",
    "sleep_score": "sleep_score_avg",
    "activity_score": "activity_score_avg",
    "readiness_score": "readiness_score_avg",
    "deep_sleep_duration": "deep_sleep_avg",
    "rem_sleep_duration": "rem_sleep_avg",
    "light_sleep_duration": "light_sleep_avg",
    "total_sleep_duration": "total_sleep_avg",
    "sleep_efficiency": "sleep_efficiency_avg",
    "resting_heart_rate": "resting_heart_rate_avg",
    "steps": "steps_avg",
    "calories_active": "calories_active_avg",
    "calories_total": "calories_total_avg",
}

# Insight key -> DailyRecord field
INSIGHT_METRICS = {
    "hrv": "hrv",
    "sleepScore": "sleep_score",
    "activityScore": "activity_score",
    "readinessScore": "readiness_score",
}

# (insight key, DailyRecord field, threshold, below-threshold advice, otherwise)
_SLEEP_ADVICE = (
    ("deepSleep", "deep_sleep_duration", 60, "Try to increase deep sleep duration", "Good deep sleep duration"),
    ("remSleep", "rem_sleep_duration", 90, "Consider improving REM sleep", "Good REM sleep duration"),
    ("totalSleep", "total_sleep_duration", 420, "Consider getting more sleep", "Good sleep duration"),
    ("efficiency", "sleep_efficiency", 85, "Work on improving sleep efficiency", "Good sleep efficiency"),
)

_ACTIVITY_ADVICE = (
    ("steps", "steps", 8000, "Try to increase daily steps", "Good step count"),
    ("calories", "calories_active", 300, "Consider more active activities", "Good calorie burn"),
)

_HEART_RATE_CEILING = 100


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def week_start(day: date) -> date:
    """The Sunday on or before *day*."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _frame(records: list[DailyRecord]) -> pd.DataFrame:
    return pd.DataFrame([r.model_dump() for r in records])


def _trailing_means(records: list[DailyRecord], fields: list[str]) -> dict[str, float]:
    window = _frame(records[-TRAILING_WINDOW:])
    return {f: float(window[f].mean()) for f in fields}


# ---------------------------------------------------------------------------
# Aggregations
# ---------------------------------------------------------------------------

def weekly_averages(records: list[DailyRecord]) -> list[WeeklyAverage]:
    """
    One WeeklyAverage per week that has at least one record, oldest first.

    Each mean divides by the number of days present in that week, not 7.
    """
    if not records:
        return []

    df = _frame(records)
    df["week"] = df["day"].map(week_start)
    means = df.groupby("week", sort=True)[list(WEEKLY_FIELDS)].mean()

    return [
        WeeklyAverage(
            week=week,
            **{WEEKLY_FIELDS[f]: float(row[f]) for f in WEEKLY_FIELDS},
        )
        for week, row in means.iterrows()
    ]


def insights(records: list[DailyRecord], current: Optional[DailyRecord]) -> dict[str, Insight]:
    """
    Compare *current* with the mean of the last 7 records, per metric.

    Only a strictly higher current value counts as improving; a tie is
    declining. Returns {} when there are no records.
    """
    if not records:
        return {}

    means = _trailing_means(records, list(INSIGHT_METRICS.values()))
    result: dict[str, Insight] = {}
    for key, field in INSIGHT_METRICS.items():
        value = float(getattr(current, field)) if current is not None else 0.0
        average = means[field]
        result[key] = Insight(
            current=value,
            average=average,
            trend="improving" if value > average else "declining",
        )
    return result


def sleep_insights(records: list[DailyRecord]) -> dict[str, MetricAdvice]:
    if not records:
        return {}
    means = _trailing_means(records, [field for _, field, *_ in _SLEEP_ADVICE])
    return {
        key: MetricAdvice(average=means[field], recommendation=low if means[field] < threshold else ok)
        for key, field, threshold, low, ok in _SLEEP_ADVICE
    }


def activity_insights(records: list[DailyRecord]) -> dict[str, MetricAdvice]:
    if not records:
        return {}
    means = _trailing_means(
        records, [field for _, field, *_ in _ACTIVITY_ADVICE] + ["average_heart_rate"]
    )
    result = {
        key: MetricAdvice(average=means[field], recommendation=low if means[field] < threshold else ok)
        for key, field, threshold, low, ok in _ACTIVITY_ADVICE
    }
    heart_rate = means["average_heart_rate"]
    result["heartRate"] = MetricAdvice(
        average=heart_rate,
        recommendation=(
            "Monitor heart rate trends" if heart_rate > _HEART_RATE_CEILING else "Normal heart rate range"
        ),
    )
    return result
