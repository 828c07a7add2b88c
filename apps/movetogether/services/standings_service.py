"""
Standings aggregator and health-data sync.

A participant's totals are always recomputed from scratch over the full
ledger window, never incremented, so any ordering of concurrent ledger
writes converges to the same aggregate.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database.models import (
    Competition,
    CompetitionDailyData,
    CompetitionParticipant,
)
from movetogether.services import ledger_service
from movetogether.services.errors import (
    CompetitionNotFoundError,
    ParticipantNotFoundError,
    PersistenceError,
    ValidationError,
)
from movetogether.services.health_provider import (
    HealthDataProvider,
    HealthSample,
    validate_health_sample,
)
from movetogether.services.scoring_service import RingGoals, ring_progress
from movetogether.utils.constants import MAX_FUTURE_DAYS
from movetogether.utils.datetime_utils import DateInput, normalize_date, utcnow
from movetogether.utils.ttl_cache import KeyedLock

logger = logging.getLogger(__name__)

# One lock per (competition_id, user_id); other keys never wait
_sync_locks = KeyedLock()


def get_sync_locks() -> KeyedLock:
    """Get the process-wide sync lock registry."""
    return _sync_locks


# ============================================================================
# Aggregation
# ============================================================================

def aggregate_rows(rows: Iterable[CompetitionDailyData], goals: RingGoals) -> Dict:
    """
    Sum ledger rows and compute average ring progress.

    Average progress is ``sum / (goal * days)``; it is 0 with no rows or a
    zero goal.
    """
    rows = list(rows)
    totals = {
        "total_points": sum(r.points or 0 for r in rows),
        "move_calories": sum(r.move_calories or 0 for r in rows),
        "exercise_minutes": sum(r.exercise_minutes or 0 for r in rows),
        "stand_hours": sum(r.stand_hours or 0 for r in rows),
        "step_count": sum(r.step_count or 0 for r in rows),
    }
    day_count = len(rows)
    if day_count == 0:
        progress = {"move_progress": 0.0, "exercise_progress": 0.0, "stand_progress": 0.0}
    else:
        progress = {
            "move_progress": ring_progress(totals["move_calories"], goals.move_calories * day_count),
            "exercise_progress": ring_progress(
                totals["exercise_minutes"], goals.exercise_minutes * day_count
            ),
            "stand_progress": ring_progress(totals["stand_hours"], goals.stand_hours * day_count),
        }
    return {**totals, **progress}


async def recompute_standings(
    session: AsyncSession,
    competition_id: str,
    user_id: str,
    date_range: Tuple[DateInput, DateInput],
    goals: Optional[RingGoals] = None,
) -> Dict:
    """
    Recompute one participant's aggregate from the ledger and write it back.

    Args:
        session: Database session
        competition_id: Competition ID
        user_id: User ID
        date_range: (start, end), both inclusive
        goals: Ring goals (loaded from the profile when omitted)

    Returns:
        The aggregate that was written, including last_sync_at

    Raises:
        ParticipantNotFoundError: If no participant row matched
        PersistenceError: If the update fails
    """
    start, end = normalize_date(date_range[0]), normalize_date(date_range[1])
    if goals is None:
        goals = await ledger_service.get_ring_goals(session, user_id)

    rows = await ledger_service.get_daily_data(session, competition_id, user_id, start, end)
    aggregate = aggregate_rows(rows, goals)
    aggregate["last_sync_at"] = utcnow()

    try:
        result = await session.execute(
            update(CompetitionParticipant)
            .where(
                CompetitionParticipant.competition_id == competition_id,
                CompetitionParticipant.user_id == user_id,
            )
            .values(**aggregate)
            .execution_options(synchronize_session="fetch")
        )
    except SQLAlchemyError as e:
        logger.error(f"Standings update failed for competition {competition_id}, user {user_id}: {e}")
        raise PersistenceError("Failed to update standings", cause=e)

    if result.rowcount == 0:
        raise ParticipantNotFoundError("Not a participant in this competition")

    logger.info(
        f"Recomputed standings competition={competition_id} user={user_id} "
        f"days={len(rows)} points={aggregate['total_points']}"
    )
    return aggregate


# ============================================================================
# Sync Orchestration
# ============================================================================

async def sync_competition_health_data(
    session: AsyncSession,
    competition_id: str,
    user_id: str,
    start_date: DateInput,
    end_date: DateInput,
    samples: List[HealthSample],
    today: Optional[date] = None,
) -> Dict:
    """
    Write a batch of daily samples to the ledger, then recompute standings once.

    Runs under the (competition, user) lock and commits before releasing it,
    so the next sync for the same key recomputes over committed rows. If any
    upsert fails the error propagates, the aggregate is not recomputed, and
    the caller rolls back.

    Args:
        session: Database session
        competition_id: Competition ID
        user_id: User ID
        start_date: Competition start (inclusive)
        end_date: Competition end (inclusive)
        samples: Daily samples to write
        today: Reference date for sample validation

    Returns:
        Dict with days_synced and the new aggregate

    Raises:
        ValidationError: If a sample is invalid or the score is locked
        ParticipantNotFoundError: If the user is not in the competition
        CompetitionNotFoundError: If the competition does not exist
        PersistenceError: If a write fails
    """
    start, end = normalize_date(start_date), normalize_date(end_date)
    if end < start:
        raise ValidationError("end_date must not be before start_date")

    for sample in samples:
        validate_health_sample(sample, today=today)

    async with _sync_locks.acquire((competition_id, user_id)):
        competition = await session.get(Competition, competition_id)
        if competition is None:
            raise CompetitionNotFoundError()

        participant = await ledger_service.get_participant(session, competition_id, user_id)
        if participant is None:
            raise ParticipantNotFoundError("Not a participant in this competition")
        if participant.score_locked_at is not None:
            raise ValidationError("Scores for this competition are locked")

        goals = await ledger_service.get_ring_goals(session, user_id)

        in_window = [s for s in samples if start <= s.date <= end]
        skipped = len(samples) - len(in_window)
        if skipped:
            logger.info(f"Skipped {skipped} sample(s) outside {start.isoformat()}..{end.isoformat()}")

        for sample in in_window:
            await ledger_service.upsert_daily_metrics(
                session,
                competition_id,
                user_id,
                sample.date,
                sample.metrics,
                scoring_type=competition.scoring_type,
                goals=goals,
                scoring_config=competition.scoring_config,
            )

        aggregate = await recompute_standings(
            session, competition_id, user_id, (start, end), goals=goals
        )

        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Sync commit failed for competition {competition_id}, user {user_id}: {e}")
            raise PersistenceError("Failed to save health data", cause=e)

    return {"days_synced": len(in_window), "standings": aggregate}


async def sync_from_provider(
    session: AsyncSession,
    provider: HealthDataProvider,
    competition_id: str,
    user_id: str,
    today: Optional[date] = None,
) -> Dict:
    """
    Pull samples for the competition window from a provider and sync them.

    The window is clipped to the latest local day (one past the UTC date)
    so days that cannot exist yet are never requested.
    """
    competition = await session.get(Competition, competition_id)
    if competition is None:
        raise CompetitionNotFoundError()

    today = today or utcnow().date()
    fetch_end = min(competition.end_date, today + timedelta(days=MAX_FUTURE_DAYS))
    samples: List[HealthSample] = []
    if fetch_end >= competition.start_date:
        samples = await provider.get_daily_samples(user_id, competition.start_date, fetch_end)

    return await sync_competition_health_data(
        session,
        competition_id,
        user_id,
        competition.start_date,
        competition.end_date,
        samples,
        today=today,
    )


async def get_leaderboard(session: AsyncSession, competition_id: str) -> List[Dict]:
    """Participants of a competition ordered by total points (highest first)."""
    result = await session.execute(
        select(CompetitionParticipant)
        .where(CompetitionParticipant.competition_id == competition_id)
        .order_by(CompetitionParticipant.total_points.desc(), CompetitionParticipant.joined_at)
    )
    leaderboard = []
    for rank, p in enumerate(result.scalars().all(), start=1):
        leaderboard.append(
            {
                "rank": rank,
                "user_id": p.user_id,
                "total_points": p.total_points,
                "move_calories": p.move_calories,
                "exercise_minutes": p.exercise_minutes,
                "stand_hours": p.stand_hours,
                "step_count": p.step_count,
                "move_progress": p.move_progress,
                "exercise_progress": p.exercise_progress,
                "stand_progress": p.stand_progress,
                "last_sync_at": p.last_sync_at.isoformat() if p.last_sync_at else None,
            }
        )
    return leaderboard
