"""
Tests for the scheduled competition status pass.

Covers activation, the completion deadline, score locking and the
once-only winner announcement.
"""

from datetime import date, datetime

import pytest
import pytz
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from movetogether.database.models import (
    ActivityFeedEntry,
    Competition,
    CompetitionParticipant,
    Notification,
)
from movetogether.services import status_service


def _utc(*args):
    return pytz.UTC.localize(datetime(*args))


async def _reload(session, model, ident):
    result = await session.execute(
        select(model).where(model.id == ident).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _won_count(session, user_id):
    result = await session.execute(
        select(func.count())
        .select_from(ActivityFeedEntry)
        .where(ActivityFeedEntry.user_id == user_id, ActivityFeedEntry.activity_type == "competition_won")
    )
    return result.scalar()


# ---------------------------------------------------------------------------
# completion_deadline
# ---------------------------------------------------------------------------


class TestCompletionDeadline:
    def test_uses_westernmost_offset(self):
        # midnight after Mar 7 + 8h offset + 12h buffer
        assert status_service.completion_deadline(date(2026, 3, 7), -8) == _utc(2026, 3, 8, 20, 0)

    def test_default_offset_when_unknown(self):
        assert status_service.completion_deadline(date(2026, 3, 7), None) == _utc(2026, 3, 8, 22, 0)

    def test_eastern_offset_uses_magnitude(self):
        assert status_service.completion_deadline(date(2026, 3, 7), 0) == _utc(2026, 3, 8, 12, 0)


# ---------------------------------------------------------------------------
# advance_competition_statuses
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upcoming_becomes_active_on_start_date(db_session, make_profile, make_competition):
    creator = await make_profile()
    starting = await make_competition(creator.id, start=date(2026, 3, 4), status="upcoming")
    future = await make_competition(creator.id, start=date(2026, 3, 5), status="upcoming")

    summary = await status_service.advance_competition_statuses(db_session, now=_utc(2026, 3, 4, 0, 5))

    assert summary["activated"] == 1
    assert (await _reload(db_session, Competition, starting.id)).status == "active"
    assert (await _reload(db_session, Competition, future.id)).status == "upcoming"


@pytest.mark.asyncio
async def test_not_completed_before_deadline(db_session, make_profile, make_competition):
    creator = await make_profile(utc_offset_hours=-8)
    competition = await make_competition(creator.id, start=date(2026, 3, 1), end=date(2026, 3, 7))

    summary = await status_service.advance_competition_statuses(db_session, now=_utc(2026, 3, 8, 19, 59))

    assert summary["completed"] == 0
    assert (await _reload(db_session, Competition, competition.id)).status == "active"


@pytest.mark.asyncio
async def test_completion_locks_scores_and_announces_winner(db_session, make_profile, make_competition):
    creator = await make_profile(utc_offset_hours=-8)
    rival = await make_profile(utc_offset_hours=1)
    competition = await make_competition(
        creator.id, participant_ids=[rival.id], start=date(2026, 3, 1), end=date(2026, 3, 7)
    )
    result = await db_session.execute(
        select(CompetitionParticipant).where(CompetitionParticipant.user_id == rival.id)
    )
    result.scalar_one().total_points = 900
    await db_session.flush()

    summary = await status_service.advance_competition_statuses(db_session, now=_utc(2026, 3, 8, 20, 0))

    assert summary["completed"] == 1
    assert (await _reload(db_session, Competition, competition.id)).status == "completed"

    locked = await db_session.execute(
        select(CompetitionParticipant.score_locked_at).where(
            CompetitionParticipant.competition_id == competition.id
        )
    )
    assert all(ts is not None for ts in locked.scalars().all())

    assert await _won_count(db_session, rival.id) == 1
    assert await _won_count(db_session, creator.id) == 0
    won = await db_session.execute(
        select(Notification).where(Notification.user_id == rival.id, Notification.type == "competition_won")
    )
    assert "900 points" in won.scalar_one().message
    assert competition.id in status_service.get_processed_winners()


@pytest.mark.asyncio
async def test_failed_commit_leaves_winner_uncached(db_session, make_profile, make_competition, monkeypatch):
    creator = await make_profile()
    competition = await make_competition(creator.id, start=date(2026, 3, 1), end=date(2026, 3, 7))

    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("connection lost"))

    monkeypatch.setattr(db_session, "commit", failing_commit)
    with pytest.raises(OperationalError):
        await status_service.advance_competition_statuses(db_session, now=_utc(2026, 3, 9, 0, 0))

    assert competition.id not in status_service.get_processed_winners()


@pytest.mark.asyncio
async def test_winner_announced_once(db_session, make_profile, make_competition):
    winner = await make_profile()
    competition = await make_competition(winner.id, status="completed")

    assert await status_service.announce_winner(db_session, competition, winner.id, 300)
    assert not await status_service.announce_winner(db_session, competition, winner.id, 300)

    # Durable check still holds after the in-process cache forgets
    status_service.get_processed_winners().discard(competition.id)
    assert not await status_service.announce_winner(db_session, competition, winner.id, 300)
    assert await _won_count(db_session, winner.id) == 1


@pytest.mark.asyncio
async def test_run_once_uses_session_factory(db_session, make_profile, make_competition):
    creator = await make_profile()
    competition = await make_competition(creator.id, start=date(2000, 1, 1), end=date(2000, 1, 7))
    await db_session.commit()

    service = status_service.CompetitionStatusService(poll_interval_seconds=1)
    summary = await service.run_once()

    assert summary["completed"] >= 1
    assert (await _reload(db_session, Competition, competition.id)).status == "completed"
