"""
Daily ledger store.

One row per (competition, user, date) holding the day's raw metrics and
points. Writes are PostgreSQL upserts on that natural key, so replaying a
sync overwrites rather than duplicates.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database.models import (
    Competition,
    CompetitionDailyData,
    CompetitionParticipant,
    Profile,
)
from movetogether.services.errors import (
    CompetitionNotFoundError,
    ParticipantNotFoundError,
    PersistenceError,
)
from movetogether.services.scoring_service import DailyMetrics, RingGoals, compute_points
from movetogether.utils.datetime_utils import DateInput, normalize_date, utcnow

logger = logging.getLogger(__name__)


async def get_participant(
    session: AsyncSession, competition_id: str, user_id: str
) -> Optional[CompetitionParticipant]:
    """Get the participant row for a user in a competition, or None."""
    result = await session.execute(
        select(CompetitionParticipant).where(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_ring_goals(session: AsyncSession, user_id: str) -> RingGoals:
    """Load a user's ring goals from their profile (defaults if no profile)."""
    result = await session.execute(select(Profile).where(Profile.id == user_id))
    return RingGoals.from_profile(result.scalar_one_or_none())


async def upsert_daily_metrics(
    session: AsyncSession,
    competition_id: str,
    user_id: str,
    day: DateInput,
    metrics: DailyMetrics,
    scoring_type: Optional[str] = None,
    goals: Optional[RingGoals] = None,
    scoring_config: Optional[dict] = None,
) -> CompetitionDailyData:
    """
    Insert or overwrite one day of metrics for a participant.

    The participant must already exist; this never creates one. When
    ``scoring_type`` or ``goals`` are omitted they are loaded from the
    competition and the user's profile.

    Args:
        session: Database session
        competition_id: Competition ID
        user_id: User ID
        day: Calendar day (timestamps are truncated to their date part)
        metrics: The day's metrics
        scoring_type: Scoring rule to apply
        goals: User's ring goals
        scoring_config: Optional scoring configuration

    Returns:
        The stored CompetitionDailyData row

    Raises:
        ParticipantNotFoundError: If the user is not in the competition
        CompetitionNotFoundError: If the competition does not exist
        PersistenceError: If the write fails
    """
    participant = await get_participant(session, competition_id, user_id)
    if participant is None:
        raise ParticipantNotFoundError("Not a participant in this competition")

    if scoring_type is None:
        competition = await session.get(Competition, competition_id)
        if competition is None:
            raise CompetitionNotFoundError()
        scoring_type = competition.scoring_type
        scoring_config = competition.scoring_config
    if goals is None:
        goals = await get_ring_goals(session, user_id)

    day = normalize_date(day)
    points = compute_points(scoring_type, metrics, goals, scoring_config)
    values = metrics.rounded()

    stmt = insert(CompetitionDailyData).values(
        competition_id=competition_id,
        participant_id=participant.id,
        user_id=user_id,
        date=day,
        points=points,
        synced_at=utcnow(),
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["competition_id", "user_id", "date"],
        set_={
            "participant_id": stmt.excluded.participant_id,
            "move_calories": stmt.excluded.move_calories,
            "exercise_minutes": stmt.excluded.exercise_minutes,
            "stand_hours": stmt.excluded.stand_hours,
            "step_count": stmt.excluded.step_count,
            "distance_meters": stmt.excluded.distance_meters,
            "workouts_completed": stmt.excluded.workouts_completed,
            "points": stmt.excluded.points,
            "synced_at": stmt.excluded.synced_at,
        },
    ).returning(CompetitionDailyData)

    try:
        result = await session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        row = result.scalar_one()
    except SQLAlchemyError as e:
        logger.error(
            f"Ledger upsert failed for competition {competition_id}, user {user_id}, "
            f"date {day.isoformat()}: {e}"
        )
        raise PersistenceError("Failed to save daily data", cause=e)

    logger.debug(
        f"Upserted daily data competition={competition_id} user={user_id} "
        f"date={day.isoformat()} points={points}"
    )
    return row


async def get_daily_data(
    session: AsyncSession,
    competition_id: str,
    user_id: str,
    start: Optional[DateInput] = None,
    end: Optional[DateInput] = None,
) -> List[CompetitionDailyData]:
    """
    Get ledger rows for a participant, ordered by date.

    Both bounds are inclusive and normalized to calendar dates.
    """
    query = select(CompetitionDailyData).where(
        CompetitionDailyData.competition_id == competition_id,
        CompetitionDailyData.user_id == user_id,
    )
    if start is not None:
        query = query.where(CompetitionDailyData.date >= normalize_date(start))
    if end is not None:
        query = query.where(CompetitionDailyData.date <= normalize_date(end))
    result = await session.execute(query.order_by(CompetitionDailyData.date))
    return list(result.scalars().all())


def daily_data_to_dict(row: CompetitionDailyData) -> dict:
    return {
        "date": row.date.isoformat() if isinstance(row.date, date) else row.date,
        "move_calories": row.move_calories,
        "exercise_minutes": row.exercise_minutes,
        "stand_hours": row.stand_hours,
        "step_count": row.step_count,
        "distance_meters": row.distance_meters,
        "workouts_completed": row.workouts_completed,
        "points": row.points,
        "synced_at": row.synced_at.isoformat() if row.synced_at else None,
    }
