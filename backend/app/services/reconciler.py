"""
Data Reconciler
===============
Builds one DailyRecord per calendar day from Oura's four daily categories:
readiness, activity, sleep and heart-rate variability.

Oura has moved these endpoints and renamed their fields across API
revisions, so each category is read through:

- CATEGORY_ENDPOINTS: an ordered fallback chain of paths, primary first.
  The first path that answers wins; if none do the category is empty.
- FIELD_ALIASES: canonical field -> upstream names, first present wins.

Readiness days form the key set. Activity, sleep and hrv rows for the same
date string are merged over the readiness row in that order, then the score
estimation policy fills whatever the authoritative category did not send.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import date
from typing import Any, Optional

import httpx

from app.models.dashboard import DailyRecord
from app.services.oura import ConfigMissingError, OuraAPIError, OuraClient, OuraTokenError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

READINESS = "readiness"
ACTIVITY = "activity"
SLEEP = "sleep"
HRV = "hrv"

# Merge order; later categories overwrite same-named fields.
CATEGORIES = (READINESS, ACTIVITY, SLEEP, HRV)

CATEGORY_ENDPOINTS: dict[str, tuple[str, ...]] = {
    READINESS: ("/v2/usercollection/daily_readiness", "/v2/usercollection/readiness"),
    ACTIVITY: ("/v2/usercollection/daily_activity", "/v2/usercollection/activity"),
    SLEEP: ("/v2/usercollection/daily_sleep", "/v2/usercollection/sleep"),
    HRV: ("/v2/usercollection/daily_hrv", "/v2/usercollection/hrv"),
}

DAY_ALIASES = ("day", "date", "summary_date")

FIELD_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    READINESS: {
        "readiness_score": ("score", "readiness_score", "readinessScore"),
        "hrv": ("hrv", "hrv_balance", "contributors.hrv_balance"),
    },
    ACTIVITY: {
        "activity_score": ("score", "activity_score"),
        "steps": ("steps", "step_count"),
        "calories_active": ("active_calories", "calories_active"),
        "calories_total": ("total_calories", "calories_total"),
        "average_heart_rate": ("average_heart_rate",),
        "max_heart_rate": ("max_heart_rate",),
    },
    SLEEP: {
        "sleep_score": ("score", "sleep_score"),
        "deep_sleep_duration": ("deep_sleep_duration",),
        "rem_sleep_duration": ("rem_sleep_duration",),
        "light_sleep_duration": ("light_sleep_duration",),
        "total_sleep_duration": ("total_sleep_duration",),
        "sleep_efficiency": ("efficiency", "sleep_efficiency"),
        "resting_heart_rate": ("lowest_heart_rate", "resting_heart_rate"),
        "average_heart_rate": ("average_heart_rate",),
    },
    HRV: {
        "hrv": ("hrv", "hrv_balance"),
    },
}

# Oura reports sleep stage durations in seconds
_SECONDS_TO_MINUTES = {
    "deep_sleep_duration",
    "rem_sleep_duration",
    "light_sleep_duration",
    "total_sleep_duration",
}

# Fields only the activity category may supply
ACTIVITY_ONLY_FIELDS = ("steps", "calories_total", "calories_active")

SLEEP_SCORE_ESTIMATE = 0.8
ACTIVITY_SCORE_ESTIMATE = 0.6

_INT_FIELDS = {
    name for name, info in DailyRecord.model_fields.items() if info.annotation is int
}


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _lookup(row: dict, alias: str) -> Any:
    value: Any = row
    for part in alias.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _coerce(field: str, value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if field in _SECONDS_TO_MINUTES:
        number = number / 60
    return round_half_up(number) if field in _INT_FIELDS else number


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalise_row(category: str, row: dict) -> dict[str, Any]:
    """Map one upstream row onto canonical field names.

    Only fields that are present upstream appear in the result, so callers
    can tell "absent" from "zero".
    """
    normalised: dict[str, Any] = {}
    for field, aliases in FIELD_ALIASES[category].items():
        for alias in aliases:
            value = _coerce(field, _lookup(row, alias))
            if value is not None:
                normalised[field] = value
                break
    return normalised


def _row_day(row: dict) -> Optional[str]:
    for alias in DAY_ALIASES:
        value = row.get(alias)
        if isinstance(value, str) and value:
            return value
    return None


def _index_by_day(category: str, rows: list[dict]) -> dict[str, dict[str, Any]]:
    """First row per date string wins."""
    indexed: dict[str, dict[str, Any]] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        day = _row_day(row)
        if day is None or day in indexed:
            continue
        indexed[day] = normalise_row(category, row)
    return indexed


def _parse_day(day: str) -> Optional[date]:
    try:
        return date.fromisoformat(day)
    except ValueError:
        logger.warning("Skipping Oura row with unparseable day %r", day)
        return None


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _merge_day(
    day: date,
    readiness: dict[str, Any],
    activity: dict[str, Any],
    sleep: dict[str, Any],
    hrv: dict[str, Any],
) -> DailyRecord:
    merged: dict[str, Any] = {}
    for part in (readiness, activity, sleep, hrv):
        merged.update(part)

    readiness_score = readiness.get("readiness_score", 0)

    sleep_score = sleep.get("sleep_score")
    if sleep_score is None:
        sleep_score = round_half_up(readiness_score * SLEEP_SCORE_ESTIMATE)

    activity_score = activity.get("activity_score")
    if activity_score is None:
        activity_score = round_half_up(readiness_score * ACTIVITY_SCORE_ESTIMATE)

    hrv_value = hrv.get("hrv")
    if hrv_value is None:
        hrv_value = readiness.get("hrv", 0)

    merged.update(
        readiness_score=readiness_score,
        sleep_score=sleep_score,
        activity_score=activity_score,
        hrv=hrv_value,
    )
    for field in ACTIVITY_ONLY_FIELDS:
        merged[field] = activity.get(field, 0)

    return DailyRecord(day=day, **merged)


def reconcile(category_rows: dict[str, list[dict]]) -> list[DailyRecord]:
    """
    Merge raw rows per category into DailyRecords, sorted by day.

    *category_rows* maps each of CATEGORIES to its raw upstream rows; a
    missing key is treated as an empty category.
    """
    by_day = {c: _index_by_day(c, category_rows.get(c, [])) for c in CATEGORIES}
    readiness, activity, sleep, hrv = (by_day[c] for c in CATEGORIES)

    records: list[DailyRecord] = []

    if not readiness and activity:
        # No readiness at all: still show steps and calories.
        logger.info("No readiness data, building %d records from activity only", len(activity))
        for day_str, row in activity.items():
            day = _parse_day(day_str)
            if day is None:
                continue
            records.append(
                DailyRecord(day=day, **{f: row.get(f, 0) for f in ACTIVITY_ONLY_FIELDS})
            )
        return sorted(records, key=lambda r: r.day)

    for day_str, readiness_row in readiness.items():
        day = _parse_day(day_str)
        if day is None:
            continue
        records.append(
            _merge_day(
                day,
                readiness_row,
                activity.get(day_str, {}),
                sleep.get(day_str, {}),
                hrv.get(day_str, {}),
            )
        )

    return sorted(records, key=lambda r: r.day)


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


def _extract_rows(payload: Any) -> list[dict]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise ValueError(f"Unexpected Oura payload shape: {type(payload).__name__}")


class DataReconciler:
    """Fetches all four categories for a date range and reconciles them."""

    def __init__(
        self,
        client: OuraClient,
        endpoints: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self._client = client
        self._endpoints = endpoints or CATEGORY_ENDPOINTS
        # Categories whose every endpoint failed during the last fetch
        self.failed_categories: set[str] = set()

    async def fetch_category(self, category: str, start_date: date, end_date: date) -> list[dict]:
        """
        Try each endpoint for *category* in order; first success wins.
        Returns [] if every endpoint fails. Never raises for upstream errors.
        """
        params = {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
        for path in self._endpoints[category]:
            try:
                payload = await self._client.authenticated_get(path, params=params)
                rows = _extract_rows(payload)
            except (OuraAPIError, OuraTokenError, ConfigMissingError, httpx.HTTPError, ValueError) as exc:
                logger.warning("Oura %s fetch from %s failed: %s", category, path, exc)
                continue
            logger.debug("Fetched %d %s rows from %s", len(rows), category, path)
            return rows

        self.failed_categories.add(category)
        logger.warning("All Oura %s endpoints failed, continuing without %s data", category, category)
        return []

    async def fetch_daily_records(self, start_date: date, end_date: date) -> list[DailyRecord]:
        """Reconciled records for the inclusive [start_date, end_date] range."""
        self.failed_categories = set()
        results = await asyncio.gather(
            *(self.fetch_category(c, start_date, end_date) for c in CATEGORIES)
        )
        return reconcile(dict(zip(CATEGORIES, results)))

    @property
    def upstream_unavailable(self) -> bool:
        """True when the last fetch got nothing from any category."""
        return len(self.failed_categories) == len(CATEGORIES)
