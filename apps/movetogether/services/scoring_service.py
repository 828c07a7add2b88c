"""
Scoring engine.
Turns one day of health metrics into competition points. Pure functions, no I/O.
"""

import math
from typing import Any, Callable, Dict, Optional

from movetogether.database.models import ScoringType
from movetogether.services.errors import ValidationError
from movetogether.utils.constants import (
    DEFAULT_EXERCISE_GOAL,
    DEFAULT_MOVE_GOAL,
    DEFAULT_STAND_GOAL,
    PERCENTAGE_MAX_POINTS,
    RING_CLOSE_POINTS,
)

WORKOUT_TYPES = ("cycling", "running", "swimming", "walking")
WORKOUT_METRICS = ("distance", "heart_rate", "steps")


# ============================================================================
# Input Structures
# ============================================================================

def _clean(value: Any) -> float:
    """Coerce a metric to a finite, non-negative float. Anything else becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounding up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


class DailyMetrics:
    """Raw health metrics for a single user on a single day."""

    def __init__(
        self,
        move_calories: Any = 0,
        exercise_minutes: Any = 0,
        stand_hours: Any = 0,
        step_count: Any = 0,
        distance_meters: Any = 0,
        workouts_completed: Any = 0,
    ):
        self.move_calories = _clean(move_calories)
        self.exercise_minutes = _clean(exercise_minutes)
        self.stand_hours = _clean(stand_hours)
        self.step_count = _clean(step_count)
        self.distance_meters = _clean(distance_meters)
        self.workouts_completed = _clean(workouts_completed)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyMetrics":
        return cls(
            move_calories=data.get("move_calories"),
            exercise_minutes=data.get("exercise_minutes"),
            stand_hours=data.get("stand_hours"),
            step_count=data.get("step_count"),
            distance_meters=data.get("distance_meters"),
            workouts_completed=data.get("workouts_completed"),
        )

    def rounded(self) -> Dict[str, int]:
        """Integer values as stored in the ledger."""
        return {
            "move_calories": round_half_up(self.move_calories),
            "exercise_minutes": round_half_up(self.exercise_minutes),
            "stand_hours": round_half_up(self.stand_hours),
            "step_count": round_half_up(self.step_count),
            "distance_meters": round_half_up(self.distance_meters),
            "workouts_completed": round_half_up(self.workouts_completed),
        }


class RingGoals:
    """A user's daily ring targets. A goal of 0 means the ring never scores."""

    def __init__(
        self,
        move_calories: Any = DEFAULT_MOVE_GOAL,
        exercise_minutes: Any = DEFAULT_EXERCISE_GOAL,
        stand_hours: Any = DEFAULT_STAND_GOAL,
    ):
        self.move_calories = _clean(move_calories)
        self.exercise_minutes = _clean(exercise_minutes)
        self.stand_hours = _clean(stand_hours)

    @classmethod
    def from_profile(cls, profile) -> "RingGoals":
        """Build goals from a Profile row; None yields defaults."""
        if profile is None:
            return cls()
        return cls(
            move_calories=profile.move_goal,
            exercise_minutes=profile.exercise_goal,
            stand_hours=profile.stand_goal,
        )


# ============================================================================
# Ring Progress
# ============================================================================

def ring_progress(value: float, goal: float) -> float:
    """
    Fraction of a ring goal achieved.

    Returns 0 when the goal is zero or negative so callers never divide by zero.
    """
    if goal <= 0:
        return 0.0
    return value / goal


# ============================================================================
# Scoring Rules
# ============================================================================

def score_ring_close(metrics: DailyMetrics, goals: RingGoals, config: Optional[Dict] = None) -> int:
    """100 points per ring whose progress reached 1.0. No partial credit."""
    rings = (
        ring_progress(metrics.move_calories, goals.move_calories),
        ring_progress(metrics.exercise_minutes, goals.exercise_minutes),
        ring_progress(metrics.stand_hours, goals.stand_hours),
    )
    return sum(RING_CLOSE_POINTS for progress in rings if progress >= 1.0)


def score_percentage(metrics: DailyMetrics, goals: RingGoals, config: Optional[Dict] = None) -> int:
    """Average of the three ring percentages, each capped at 100%."""
    capped = (
        min(ring_progress(metrics.move_calories, goals.move_calories), 1.0),
        min(ring_progress(metrics.exercise_minutes, goals.exercise_minutes), 1.0),
        min(ring_progress(metrics.stand_hours, goals.stand_hours), 1.0),
    )
    return round_half_up(sum(p * PERCENTAGE_MAX_POINTS for p in capped) / 3)


def score_raw_numbers(metrics: DailyMetrics, goals: RingGoals, config: Optional[Dict] = None) -> int:
    """Sum of raw move calories, exercise minutes and stand hours. Uncapped."""
    return (
        round_half_up(metrics.move_calories)
        + round_half_up(metrics.exercise_minutes)
        + round_half_up(metrics.stand_hours)
    )


def score_step_count(metrics: DailyMetrics, goals: RingGoals, config: Optional[Dict] = None) -> int:
    """One point per step."""
    return round_half_up(metrics.step_count)


def score_workout(metrics: DailyMetrics, goals: RingGoals, config: Optional[Dict] = None) -> int:
    # TODO: define workout points once workout_metric weighting is agreed
    # (distance vs heart_rate vs steps); config is validated but unused until then.
    validate_scoring_config(ScoringType.WORKOUT, config)
    return 0


SCORING_RULES: Dict[ScoringType, Callable[[DailyMetrics, RingGoals, Optional[Dict]], int]] = {
    ScoringType.RING_CLOSE: score_ring_close,
    ScoringType.PERCENTAGE: score_percentage,
    ScoringType.RAW_NUMBERS: score_raw_numbers,
    ScoringType.STEP_COUNT: score_step_count,
    ScoringType.WORKOUT: score_workout,
}

_missing_rules = set(ScoringType) - set(SCORING_RULES)
if _missing_rules:
    raise RuntimeError(f"No scoring rule registered for: {sorted(t.value for t in _missing_rules)}")


# ============================================================================
# Public API
# ============================================================================

def parse_scoring_type(value: Any) -> ScoringType:
    """
    Convert a stored or user-supplied value to a ScoringType.

    Raises:
        ValidationError: If the value is not a known scoring type
    """
    if isinstance(value, ScoringType):
        return value
    try:
        return ScoringType(value)
    except ValueError:
        raise ValidationError(f"Unknown scoring type: {value!r}")


def validate_scoring_config(scoring_type: Any, config: Optional[Dict]) -> None:
    """
    Validate optional per-competition scoring configuration.

    Only ``workout`` scoring reads configuration: ``workout_types`` must be a
    subset of the known workout types and ``workout_metric`` one of the known
    metrics.

    Raises:
        ValidationError: If the configuration is malformed
    """
    if not config:
        return
    if not isinstance(config, dict):
        raise ValidationError("scoring_config must be an object")
    if parse_scoring_type(scoring_type) != ScoringType.WORKOUT:
        return

    workout_types = config.get("workout_types")
    if workout_types is not None:
        if not isinstance(workout_types, list):
            raise ValidationError("workout_types must be a list")
        unknown = [t for t in workout_types if t not in WORKOUT_TYPES]
        if unknown:
            raise ValidationError(f"Unknown workout types: {', '.join(map(str, unknown))}")

    workout_metric = config.get("workout_metric")
    if workout_metric is not None and workout_metric not in WORKOUT_METRICS:
        raise ValidationError(f"Unknown workout metric: {workout_metric}")


def compute_points(
    scoring_type: Any,
    metrics: DailyMetrics,
    goals: RingGoals,
    scoring_config: Optional[Dict] = None,
) -> int:
    """
    Compute points for one day of metrics under a scoring rule.

    Args:
        scoring_type: ScoringType (or its string value)
        metrics: The day's metrics
        goals: The user's ring goals
        scoring_config: Optional rule configuration (workout only)

    Returns:
        Finite, non-negative integer points

    Raises:
        ValidationError: If the scoring type is unknown
    """
    rule = SCORING_RULES[parse_scoring_type(scoring_type)]
    return max(0, int(rule(metrics, goals, scoring_config)))
