"""
Health data provider interface and sample validation.

The provider (HealthKit bridge, wearable API, ...) is a collaborator: the
competition pipeline only needs per-day samples for a date range.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from movetogether.services.errors import ValidationError
from movetogether.services.scoring_service import DailyMetrics
from movetogether.utils.constants import (
    MAX_EXERCISE_MINUTES,
    MAX_FUTURE_DAYS,
    MAX_HISTORY_DAYS,
    MAX_MOVE_CALORIES,
    MAX_STAND_HOURS,
    MAX_STEP_COUNT,
)
from movetogether.utils.datetime_utils import DateInput, normalize_date, utc_today

logger = logging.getLogger(__name__)


class HealthSample:
    """One day of provider data: a calendar date plus its metrics."""

    def __init__(self, day: DateInput, metrics: DailyMetrics):
        self.date = normalize_date(day)
        self.metrics = metrics

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthSample":
        if "date" not in data or data["date"] in (None, ""):
            raise ValidationError("Each health sample requires a date")
        try:
            return cls(data["date"], DailyMetrics.from_dict(data))
        except ValidationError:
            raise
        except ValueError as e:
            raise ValidationError(str(e))

    def __repr__(self) -> str:
        return f"HealthSample(date={self.date.isoformat()})"


class HealthDataProvider:
    """Source of daily health samples. Subclasses implement get_daily_samples."""

    async def get_daily_samples(self, user_id: str, start: date, end: date) -> List[HealthSample]:
        raise NotImplementedError


class StaticHealthDataProvider(HealthDataProvider):
    """Provider backed by an in-memory list, keyed by user."""

    def __init__(self, samples_by_user: Optional[Dict[str, List[HealthSample]]] = None):
        self.samples_by_user = samples_by_user or {}

    async def get_daily_samples(self, user_id: str, start: date, end: date) -> List[HealthSample]:
        return [
            sample
            for sample in self.samples_by_user.get(user_id, [])
            if start <= sample.date <= end
        ]


def validate_health_sample(sample: HealthSample, today: Optional[date] = None) -> None:
    """
    Reject implausible samples before anything is written.

    Args:
        sample: Sample to check
        today: Reference UTC date (defaults to today in UTC). Samples may be
            one day ahead of it, since a user east of UTC is already on the
            next local day

    Raises:
        ValidationError: If the date is past the latest local day or too old,
            or a metric is outside its plausible range
    """
    today = today or utc_today()
    if sample.date > today + timedelta(days=MAX_FUTURE_DAYS):
        raise ValidationError(f"Cannot sync future date {sample.date.isoformat()}")
    if (today - sample.date).days > MAX_HISTORY_DAYS:
        raise ValidationError(f"Date {sample.date.isoformat()} is more than a year old")

    metrics = sample.metrics
    limits = (
        ("move_calories", metrics.move_calories, MAX_MOVE_CALORIES),
        ("exercise_minutes", metrics.exercise_minutes, MAX_EXERCISE_MINUTES),
        ("stand_hours", metrics.stand_hours, MAX_STAND_HOURS),
        ("step_count", metrics.step_count, MAX_STEP_COUNT),
    )
    for name, value, limit in limits:
        if value > limit:
            logger.warning(f"Rejected {name}={value} for {sample.date.isoformat()} (max {limit})")
            raise ValidationError(f"Invalid {name}: must be between 0 and {limit}")
