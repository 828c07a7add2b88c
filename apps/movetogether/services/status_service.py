"""
Competition status service: advances stored competition statuses.

Background worker that polls every 15 minutes:
- upcoming competitions whose start date has arrived become active
- active competitions past their completion deadline have every score
  locked, become completed, and their winner is announced

The completion deadline gives the westernmost participant time to sync
their last day: midnight UTC after the end date, plus that participant's
UTC offset, plus a safety buffer.
"""

import asyncio
import logging
import os
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytz
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database import db
from movetogether.database.models import (
    ActivityType,
    Competition,
    CompetitionParticipant,
    CompetitionStatus,
    NotificationType,
    Profile,
)
from movetogether.services import notification_service
from movetogether.utils.constants import (
    COMPLETION_SAFETY_BUFFER_HOURS,
    DEFAULT_WESTERNMOST_OFFSET_HOURS,
)
from movetogether.utils.datetime_utils import utcnow
from movetogether.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# How often the worker advances statuses (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("STATUS_POLL_INTERVAL_SECONDS", "900"))

# Winners already announced in this process; the activity table is the durable check
WINNER_CACHE_TTL_SECONDS = 24 * 60 * 60
_processed_winners = TTLCache(ttl_seconds=WINNER_CACHE_TTL_SECONDS)


def get_processed_winners() -> TTLCache:
    return _processed_winners


def completion_deadline(end_date: date, westernmost_offset_hours: Optional[int]) -> datetime:
    """
    Moment after which an active competition may be completed.

    Args:
        end_date: Last competition day (inclusive)
        westernmost_offset_hours: Most negative participant UTC offset, or None

    Returns:
        Timezone-aware UTC datetime
    """
    if westernmost_offset_hours is None:
        westernmost_offset_hours = DEFAULT_WESTERNMOST_OFFSET_HOURS
    midnight_after_end = pytz.UTC.localize(
        datetime(end_date.year, end_date.month, end_date.day) + timedelta(days=1)
    )
    return midnight_after_end + timedelta(
        hours=abs(westernmost_offset_hours) + COMPLETION_SAFETY_BUFFER_HOURS
    )


async def get_westernmost_offset(session: AsyncSession, competition_id: str) -> Optional[int]:
    """Most negative utc_offset_hours among participants, or None if unknown."""
    result = await session.execute(
        select(func.min(Profile.utc_offset_hours))
        .join(CompetitionParticipant, CompetitionParticipant.user_id == Profile.id)
        .where(CompetitionParticipant.competition_id == competition_id)
    )
    return result.scalar()


async def activate_started_competitions(session: AsyncSession, today: date) -> int:
    """Move upcoming competitions whose start date has arrived to active."""
    result = await session.execute(
        update(Competition)
        .where(
            Competition.status == CompetitionStatus.UPCOMING.value,
            Competition.start_date <= today,
        )
        .values(status=CompetitionStatus.ACTIVE.value)
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    if count:
        logger.info(f"Activated {count} competition(s)")
    return count


async def complete_competition(session: AsyncSession, competition: Competition, now: datetime) -> Optional[str]:
    """
    Lock every unlocked score, mark the competition completed, announce the winner.

    Returns:
        Winner user ID, or None if the competition has no participants
    """
    await session.execute(
        update(CompetitionParticipant)
        .where(
            CompetitionParticipant.competition_id == competition.id,
            CompetitionParticipant.score_locked_at.is_(None),
        )
        .values(score_locked_at=now)
        .execution_options(synchronize_session=False)
    )
    competition.status = CompetitionStatus.COMPLETED.value
    await session.flush()

    winner_result = await session.execute(
        select(CompetitionParticipant.user_id, CompetitionParticipant.total_points)
        .where(CompetitionParticipant.competition_id == competition.id)
        .order_by(CompetitionParticipant.total_points.desc(), CompetitionParticipant.joined_at)
        .limit(1)
    )
    winner = winner_result.first()
    if winner is None:
        logger.info(f"Completed competition {competition.id} with no participants")
        return None

    await announce_winner(session, competition, winner.user_id, winner.total_points)
    logger.info(f"Completed competition {competition.id}; winner {winner.user_id}")
    return winner.user_id


async def announce_winner(
    session: AsyncSession, competition: Competition, winner_id: str, total_points: int
) -> bool:
    """
    Record the competition_won activity and notify the winner, once.

    Returns True if the announcement was made by this call. The caller marks
    the competition in the winner cache once its transaction commits.
    """
    if competition.id in _processed_winners:
        return False
    if await notification_service.has_activity(
        session, winner_id, ActivityType.COMPETITION_WON, competition.id
    ):
        return False

    recorded = await notification_service.record_activity(
        session,
        winner_id,
        ActivityType.COMPETITION_WON,
        {
            "competition_id": competition.id,
            "competition_name": competition.name,
            "total_points": total_points,
        },
    )
    await notification_service.notify(
        session,
        NotificationType.COMPETITION_WON,
        winner_id,
        {
            "message": f"You won {competition.name} with {total_points} points!",
            "competition_id": competition.id,
        },
    )
    return recorded


async def advance_competition_statuses(session: AsyncSession, now: Optional[datetime] = None) -> Dict:
    """
    Run one status pass and commit.

    Args:
        session: Database session
        now: Reference time (defaults to utcnow())

    Returns:
        Dict with activated and completed counts
    """
    now = now or utcnow()
    today = now.date()

    activated = await activate_started_competitions(session, today)

    result = await session.execute(
        select(Competition).where(
            Competition.status == CompetitionStatus.ACTIVE.value,
            Competition.end_date < today,
        )
    )
    candidates: List[Competition] = list(result.scalars().all())

    completed = 0
    announced: List[str] = []
    for competition in candidates:
        offset = await get_westernmost_offset(session, competition.id)
        if now < completion_deadline(competition.end_date, offset):
            continue
        if await complete_competition(session, competition, now) is not None:
            announced.append(competition.id)
        completed += 1

    await session.commit()
    # Only cache winners whose announcement is durable
    for competition_id in announced:
        _processed_winners.set(competition_id)
    return {"activated": activated, "completed": completed}


class CompetitionStatusService:
    """Background service that advances competition statuses."""

    def __init__(self, poll_interval_seconds: int = POLL_INTERVAL_SECONDS):
        self.poll_interval_seconds = poll_interval_seconds
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background status worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Competition status worker started")

    def stop(self) -> None:
        """Stop the background status worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Competition status worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: run a pass, then wait. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in competition status worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> Dict:
        async with db.AsyncSessionLocal() as session:
            try:
                summary = await advance_competition_statuses(session)
            except Exception:
                await session.rollback()
                raise
        if summary["activated"] or summary["completed"]:
            logger.info(
                f"Status pass: {summary['activated']} activated, {summary['completed']} completed"
            )
        return summary


# Global service instance
_status_service: Optional[CompetitionStatusService] = None


def get_competition_status_service() -> CompetitionStatusService:
    """Get the global competition status service instance."""
    global _status_service
    if _status_service is None:
        _status_service = CompetitionStatusService()
    return _status_service
