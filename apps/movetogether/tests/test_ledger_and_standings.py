"""
Tests for the daily ledger and the standings aggregator.

Verifies upsert idempotence and overwrite semantics, date normalization,
inclusive date windows, zero-goal progress, and the sync orchestrator's
all-or-nothing behaviour.
"""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from movetogether.database.models import CompetitionDailyData, CompetitionParticipant
from movetogether.services import ledger_service, standings_service
from movetogether.services.errors import (
    ParticipantNotFoundError,
    PersistenceError,
    ValidationError,
)
from movetogether.services.health_provider import HealthSample, StaticHealthDataProvider
from movetogether.services.scoring_service import DailyMetrics, RingGoals


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def athlete(make_profile):
    """Participant with goals 500 kcal / 30 min / 12 h."""
    return await make_profile(full_name="Athlete", move_goal=500, exercise_goal=30, stand_goal=12)


@pytest_asyncio.fixture
async def competition(make_competition, athlete):
    """Active ring_close competition 2026-03-01..2026-03-07 with the athlete as creator."""
    return await make_competition(athlete.id, start=date(2026, 3, 1), end=date(2026, 3, 7))


async def _row_count(session, competition_id):
    result = await session.execute(
        select(func.count())
        .select_from(CompetitionDailyData)
        .where(CompetitionDailyData.competition_id == competition_id)
    )
    return result.scalar()


async def _participant(session, competition_id, user_id):
    result = await session.execute(
        select(CompetitionParticipant)
        .where(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upsert_is_idempotent(db_session, competition, athlete):
    metrics = DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12)

    await ledger_service.upsert_daily_metrics(db_session, competition.id, athlete.id, "2026-03-02", metrics)
    await ledger_service.upsert_daily_metrics(db_session, competition.id, athlete.id, "2026-03-02", metrics)

    assert await _row_count(db_session, competition.id) == 1
    rows = await ledger_service.get_daily_data(db_session, competition.id, athlete.id)
    assert rows[0].points == 300


@pytest.mark.asyncio
async def test_upsert_overwrites_previous_values(db_session, competition, athlete):
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-02", DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12)
    )
    row = await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-02", DailyMetrics(move_calories=100)
    )

    assert row.move_calories == 100
    assert row.exercise_minutes == 0
    assert row.points == 0
    assert await _row_count(db_session, competition.id) == 1


@pytest.mark.asyncio
async def test_timestamp_inputs_map_to_same_row(db_session, competition, athlete):
    metrics = DailyMetrics(move_calories=250)
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-02T07:15:00Z", metrics
    )
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, datetime(2026, 3, 2, 23, 59), metrics
    )
    await ledger_service.upsert_daily_metrics(db_session, competition.id, athlete.id, date(2026, 3, 2), metrics)

    rows = await ledger_service.get_daily_data(db_session, competition.id, athlete.id)
    assert len(rows) == 1
    assert rows[0].date == date(2026, 3, 2)


@pytest.mark.asyncio
async def test_upsert_rejects_non_participant(db_session, competition, make_profile):
    outsider = await make_profile()
    with pytest.raises(ParticipantNotFoundError):
        await ledger_service.upsert_daily_metrics(
            db_session, competition.id, outsider.id, "2026-03-02", DailyMetrics(move_calories=1)
        )
    assert await _row_count(db_session, competition.id) == 0


@pytest.mark.asyncio
async def test_upsert_stores_rounded_integers(db_session, competition, athlete):
    row = await ledger_service.upsert_daily_metrics(
        db_session,
        competition.id,
        athlete.id,
        "2026-03-03",
        DailyMetrics(move_calories=420.5, exercise_minutes=29.4, stand_hours=11.6, step_count=8000.5),
    )
    assert (row.move_calories, row.exercise_minutes, row.stand_hours, row.step_count) == (421, 29, 12, 8001)


@pytest.mark.asyncio
async def test_get_daily_data_bounds_are_inclusive(db_session, competition, athlete):
    for day in ("2026-03-01", "2026-03-04", "2026-03-07"):
        await ledger_service.upsert_daily_metrics(
            db_session, competition.id, athlete.id, day, DailyMetrics(step_count=1)
        )

    rows = await ledger_service.get_daily_data(
        db_session, competition.id, athlete.id, "2026-03-01", "2026-03-07T00:00:00Z"
    )
    assert [r.date for r in rows] == [date(2026, 3, 1), date(2026, 3, 4), date(2026, 3, 7)]


# ---------------------------------------------------------------------------
# Standings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_end_to_end_ring_close_example(db_session, competition, athlete):
    """Day 1 closes every ring (300), day 2 closes none (0)."""
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-01",
        DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12),
    )
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-02",
        DailyMetrics(move_calories=250, exercise_minutes=15, stand_hours=6),
    )

    aggregate = await standings_service.recompute_standings(
        db_session, competition.id, athlete.id, ("2026-03-01", "2026-03-07")
    )

    assert aggregate["total_points"] == 300
    assert aggregate["move_calories"] == 750
    assert aggregate["move_progress"] == pytest.approx(0.75)
    assert aggregate["exercise_progress"] == pytest.approx(0.75)
    assert aggregate["stand_progress"] == pytest.approx(0.75)

    participant = await _participant(db_session, competition.id, athlete.id)
    assert participant.total_points == 300
    assert participant.move_progress == pytest.approx(0.75)
    assert participant.last_sync_at is not None


@pytest.mark.asyncio
async def test_aggregate_reflects_only_latest_write(db_session, competition, athlete):
    for metrics in (
        DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12),
        DailyMetrics(move_calories=500),
    ):
        await ledger_service.upsert_daily_metrics(db_session, competition.id, athlete.id, "2026-03-03", metrics)

    aggregate = await standings_service.recompute_standings(
        db_session, competition.id, athlete.id, (competition.start_date, competition.end_date)
    )
    assert aggregate["total_points"] == 100
    assert aggregate["move_calories"] == 500


@pytest.mark.asyncio
async def test_recompute_includes_last_day(db_session, competition, athlete):
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-07",
        DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12),
    )
    aggregate = await standings_service.recompute_standings(
        db_session, competition.id, athlete.id, ("2026-03-01", "2026-03-07")
    )
    assert aggregate["total_points"] == 300


@pytest.mark.asyncio
async def test_recompute_with_no_rows_is_zero(db_session, competition, athlete):
    aggregate = await standings_service.recompute_standings(
        db_session, competition.id, athlete.id, ("2026-03-01", "2026-03-07")
    )
    assert aggregate["total_points"] == 0
    assert aggregate["move_progress"] == 0.0


@pytest.mark.asyncio
async def test_recompute_zero_goal_progress_is_zero(db_session, competition, athlete):
    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, athlete.id, "2026-03-02", DailyMetrics(move_calories=400, stand_hours=10)
    )
    aggregate = await standings_service.recompute_standings(
        db_session,
        competition.id,
        athlete.id,
        ("2026-03-01", "2026-03-07"),
        goals=RingGoals(move_calories=0, exercise_minutes=30, stand_hours=12),
    )
    assert aggregate["move_progress"] == 0.0
    assert aggregate["stand_progress"] == pytest.approx(10 / 12)


@pytest.mark.asyncio
async def test_recompute_missing_participant(db_session, competition, make_profile):
    outsider = await make_profile()
    with pytest.raises(ParticipantNotFoundError):
        await standings_service.recompute_standings(
            db_session, competition.id, outsider.id, ("2026-03-01", "2026-03-07")
        )


# ---------------------------------------------------------------------------
# Sync orchestration
# ---------------------------------------------------------------------------


def _samples(*days):
    return [
        HealthSample(day, DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12))
        for day in days
    ]


@pytest.mark.asyncio
async def test_sync_writes_days_and_recomputes_once(db_session, competition, athlete):
    with patch.object(
        standings_service, "recompute_standings", wraps=standings_service.recompute_standings
    ) as recompute:
        result = await standings_service.sync_competition_health_data(
            db_session,
            competition.id,
            athlete.id,
            competition.start_date,
            competition.end_date,
            _samples("2026-03-01", "2026-03-02", "2026-03-03"),
            today=date(2026, 3, 4),
        )

    assert recompute.call_count == 1
    assert result["days_synced"] == 3
    assert result["standings"]["total_points"] == 900


@pytest.mark.asyncio
async def test_sync_skips_days_outside_window(db_session, competition, athlete):
    result = await standings_service.sync_competition_health_data(
        db_session,
        competition.id,
        athlete.id,
        competition.start_date,
        competition.end_date,
        _samples("2026-02-28", "2026-03-01"),
        today=date(2026, 3, 4),
    )
    assert result["days_synced"] == 1
    assert await _row_count(db_session, competition.id) == 1


@pytest.mark.asyncio
async def test_sync_rejects_future_dates_before_writing(db_session, competition, athlete):
    with pytest.raises(ValidationError):
        await standings_service.sync_competition_health_data(
            db_session,
            competition.id,
            athlete.id,
            competition.start_date,
            competition.end_date,
            _samples("2026-03-01", "2026-03-06"),
            today=date(2026, 3, 4),
        )
    assert await _row_count(db_session, competition.id) == 0


@pytest.mark.asyncio
async def test_sync_accepts_local_day_ahead_of_utc(db_session, competition, athlete):
    """At 21:00 UTC a UTC+10 user is already on the next calendar day."""
    samples = [
        HealthSample.from_dict({"date": "2026-03-01", "move_calories": 500, "exercise_minutes": 30, "stand_hours": 12}),
        HealthSample.from_dict({"date": "2026-03-03T07:00:00+10:00", "move_calories": 500}),
    ]
    result = await standings_service.sync_competition_health_data(
        db_session, competition.id, athlete.id, competition.start_date, competition.end_date,
        samples, today=date(2026, 3, 2),
    )

    assert result["days_synced"] == 2
    rows = await ledger_service.get_daily_data(db_session, competition.id, athlete.id)
    assert [r.date for r in rows] == [date(2026, 3, 1), date(2026, 3, 3)]


@pytest.mark.asyncio
async def test_concurrent_syncs_for_same_participant_keep_every_day(
    db_session, test_engine, competition, athlete
):
    await db_session.commit()
    session_maker = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def sync_day(day):
        async with session_maker() as session:
            return await standings_service.sync_competition_health_data(
                session, competition.id, athlete.id, competition.start_date, competition.end_date,
                _samples(day), today=date(2026, 3, 4),
            )

    await asyncio.gather(sync_day("2026-03-01"), sync_day("2026-03-02"))

    participant = await _participant(db_session, competition.id, athlete.id)
    assert participant.total_points == 600
    assert await _row_count(db_session, competition.id) == 2
    assert len(standings_service.get_sync_locks()) == 0


@pytest.mark.asyncio
async def test_sync_rejects_implausible_values(db_session, competition, athlete):
    samples = [HealthSample("2026-03-01", DailyMetrics(stand_hours=25))]
    with pytest.raises(ValidationError):
        await standings_service.sync_competition_health_data(
            db_session, competition.id, athlete.id, competition.start_date, competition.end_date,
            samples, today=date(2026, 3, 4),
        )


@pytest.mark.asyncio
async def test_sync_failure_skips_recompute(db_session, competition, athlete):
    original = ledger_service.upsert_daily_metrics
    calls = {"n": 0}

    async def flaky_upsert(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise PersistenceError("Failed to save daily data")
        return await original(*args, **kwargs)

    with patch.object(ledger_service, "upsert_daily_metrics", side_effect=flaky_upsert), \
            patch.object(standings_service, "recompute_standings") as recompute:
        with pytest.raises(PersistenceError):
            await standings_service.sync_competition_health_data(
                db_session,
                competition.id,
                athlete.id,
                competition.start_date,
                competition.end_date,
                _samples("2026-03-01", "2026-03-02", "2026-03-03"),
                today=date(2026, 3, 4),
            )

    recompute.assert_not_called()
    assert len(standings_service.get_sync_locks()) == 0


@pytest.mark.asyncio
async def test_sync_rejected_after_score_lock(db_session, competition, athlete):
    participant = await _participant(db_session, competition.id, athlete.id)
    participant.score_locked_at = datetime(2026, 3, 9, tzinfo=timezone.utc)
    await db_session.flush()

    with pytest.raises(ValidationError, match="locked"):
        await standings_service.sync_competition_health_data(
            db_session, competition.id, athlete.id, competition.start_date, competition.end_date,
            _samples("2026-03-01"), today=date(2026, 3, 4),
        )


@pytest.mark.asyncio
async def test_sync_from_provider(db_session, competition, athlete):
    provider = StaticHealthDataProvider(
        {athlete.id: _samples("2026-03-01", "2026-03-02") + _samples("2026-03-20")}
    )
    result = await standings_service.sync_from_provider(
        db_session, provider, competition.id, athlete.id, today=date(2026, 3, 4)
    )
    assert result["days_synced"] == 2
    assert result["standings"]["total_points"] == 600


@pytest.mark.asyncio
async def test_leaderboard_order(db_session, make_profile, make_competition):
    leader = await make_profile(move_goal=500, exercise_goal=30, stand_goal=12)
    trailer = await make_profile(move_goal=500, exercise_goal=30, stand_goal=12)
    competition = await make_competition(trailer.id, participant_ids=[leader.id])

    await ledger_service.upsert_daily_metrics(
        db_session, competition.id, leader.id, "2026-03-02",
        DailyMetrics(move_calories=500, exercise_minutes=30, stand_hours=12),
    )
    for user in (leader, trailer):
        await standings_service.recompute_standings(
            db_session, competition.id, user.id, (competition.start_date, competition.end_date)
        )

    leaderboard = await standings_service.get_leaderboard(db_session, competition.id)
    assert [entry["user_id"] for entry in leaderboard] == [leader.id, trailer.id]
    assert leaderboard[0]["rank"] == 1
    assert leaderboard[0]["total_points"] == 300
