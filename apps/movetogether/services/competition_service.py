"""
Competition lifecycle service.

Creation, classification, editing, deletion, public discovery and joining.
Status is a stored field: it is set at creation and advanced only by the
scheduled status pass (see status_service).
"""

from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database.models import (
    ActivityType,
    Competition,
    CompetitionInvitation,
    CompetitionParticipant,
    CompetitionStatus,
    CompetitionType,
    InvitationStatus,
    NotificationType,
    Profile,
    RepeatOption,
)
from movetogether.services import invitation_service, notification_service, standings_service
from movetogether.services.errors import (
    AuthorizationError,
    CompetitionNotFoundError,
    ValidationError,
)
from movetogether.services.scoring_service import parse_scoring_type, validate_scoring_config
from movetogether.utils.constants import (
    MAX_COMPETITIONS_PER_DAY,
    MONTHLY_MAX_DAYS,
    MONTHLY_MIN_DAYS,
    WEEKEND_DURATION_DAYS,
    WEEKEND_START_WEEKDAY,
    WEEKLY_DURATION_DAYS,
)
from movetogether.utils.datetime_utils import (
    DateInput,
    inclusive_day_count,
    normalize_date,
    utc_today,
    utcnow,
)
import logging

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100

# Fields the creator may change in each status
EDITABLE_FIELDS: Dict[CompetitionStatus, frozenset] = {
    CompetitionStatus.UPCOMING: frozenset(
        {"name", "start_date", "end_date", "scoring_type", "scoring_config", "is_public", "repeat_option"}
    ),
    CompetitionStatus.ACTIVE: frozenset({"name", "end_date", "is_public", "repeat_option"}),
    CompetitionStatus.COMPLETED: frozenset(),
}


# ============================================================================
# Classification
# ============================================================================

def classify_competition_type(start: DateInput, end: DateInput) -> CompetitionType:
    """
    Derive the competition type from its inclusive date range.

    Two days starting on a Saturday is a weekend, seven days is weekly,
    28-31 days is monthly, anything else is custom.
    """
    start, end = normalize_date(start), normalize_date(end)
    duration = inclusive_day_count(start, end)
    if duration == WEEKEND_DURATION_DAYS and start.weekday() == WEEKEND_START_WEEKDAY:
        return CompetitionType.WEEKEND
    if duration == WEEKLY_DURATION_DAYS:
        return CompetitionType.WEEKLY
    if MONTHLY_MIN_DAYS <= duration <= MONTHLY_MAX_DAYS:
        return CompetitionType.MONTHLY
    return CompetitionType.CUSTOM


def describe_competition(competition_type: CompetitionType, duration_days: int) -> str:
    """Default description for a competition type."""
    if competition_type == CompetitionType.WEEKEND:
        return "Close your rings all weekend!"
    if competition_type == CompetitionType.WEEKLY:
        return "A full week of competition!"
    if competition_type == CompetitionType.MONTHLY:
        return "A month-long challenge!"
    return f"{duration_days}-day challenge"


def derive_initial_status(start: DateInput, today: Optional[date] = None) -> CompetitionStatus:
    """Active if the competition has already started, otherwise upcoming."""
    today = today or utc_today()
    return CompetitionStatus.ACTIVE if normalize_date(start) <= today else CompetitionStatus.UPCOMING


def check_editable(status: str, fields: Iterable[str]) -> None:
    """
    Enforce the editability matrix.

    Raises:
        ValidationError: If any field may not change in this status
    """
    status = CompetitionStatus(status)
    if status == CompetitionStatus.COMPLETED:
        raise ValidationError("Cannot edit a completed competition")
    allowed = EDITABLE_FIELDS[status]
    for field in fields:
        if field in allowed:
            continue
        if field == "start_date":
            raise ValidationError(f"Cannot change start date for an {status.value} competition")
        if field == "scoring_type" or field == "scoring_config":
            raise ValidationError(f"Cannot change scoring type for an {status.value} competition")
        raise ValidationError(f"Field '{field}' cannot be edited")


def _validate_dates(start: date, end: date) -> None:
    if end <= start:
        raise ValidationError("End date must be after start date")


def _validate_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Competition name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Competition name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _parse_repeat_option(value: Optional[str]) -> RepeatOption:
    try:
        return RepeatOption(value or RepeatOption.NONE.value)
    except ValueError:
        raise ValidationError(f"Unknown repeat option: {value!r}")


def competition_to_dict(competition: Competition, participant_count: Optional[int] = None) -> Dict:
    data = {
        "id": competition.id,
        "creator_id": competition.creator_id,
        "name": competition.name,
        "description": competition.description,
        "start_date": competition.start_date.isoformat(),
        "end_date": competition.end_date.isoformat(),
        "type": competition.type,
        "status": competition.status,
        "scoring_type": competition.scoring_type,
        "scoring_config": competition.scoring_config,
        "is_public": competition.is_public,
        "repeat_option": competition.repeat_option,
        "created_at": competition.created_at.isoformat() if competition.created_at else None,
    }
    if participant_count is not None:
        data["participant_count"] = participant_count
    return data


# ============================================================================
# Queries
# ============================================================================

async def get_competition_or_404(session: AsyncSession, competition_id: str) -> Competition:
    competition = await session.get(Competition, competition_id)
    if competition is None:
        raise CompetitionNotFoundError()
    return competition


async def is_participant(session: AsyncSession, competition_id: str, user_id: str) -> bool:
    result = await session.execute(
        select(CompetitionParticipant.id).where(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def get_competition(session: AsyncSession, competition_id: str, user_id: str) -> Dict:
    """
    Get a competition with its leaderboard.

    Visible to the creator, participants, invitees, and anyone for public
    competitions. Hidden competitions raise CompetitionNotFoundError.
    """
    competition = await get_competition_or_404(session, competition_id)
    if not competition.is_public and competition.creator_id != user_id:
        if not await is_participant(session, competition_id, user_id):
            invited = await session.execute(
                select(CompetitionInvitation.id).where(
                    CompetitionInvitation.competition_id == competition_id,
                    CompetitionInvitation.invitee_id == user_id,
                    CompetitionInvitation.status == InvitationStatus.PENDING.value,
                )
            )
            if invited.first() is None:
                raise CompetitionNotFoundError()

    leaderboard = await standings_service.get_leaderboard(session, competition_id)
    data = competition_to_dict(competition, participant_count=len(leaderboard))
    data["leaderboard"] = leaderboard
    return data


async def list_user_competitions(session: AsyncSession, user_id: str) -> List[Dict]:
    """Competitions the user participates in, newest start first."""
    result = await session.execute(
        select(Competition)
        .join(CompetitionParticipant, CompetitionParticipant.competition_id == Competition.id)
        .where(CompetitionParticipant.user_id == user_id)
        .order_by(Competition.start_date.desc())
    )
    return [competition_to_dict(c) for c in result.scalars().all()]


async def list_public_competitions(
    session: AsyncSession, user_id: str, limit: int = 20, offset: int = 0
) -> List[Dict]:
    """
    Public competitions that are upcoming or active, soonest first.

    Excludes competitions the user has already joined.
    """
    joined = select(CompetitionParticipant.competition_id).where(
        CompetitionParticipant.user_id == user_id
    )
    counts = (
        select(
            CompetitionParticipant.competition_id,
            func.count(CompetitionParticipant.id).label("participant_count"),
        )
        .group_by(CompetitionParticipant.competition_id)
        .subquery()
    )
    result = await session.execute(
        select(Competition, func.coalesce(counts.c.participant_count, 0))
        .outerjoin(counts, counts.c.competition_id == Competition.id)
        .where(
            Competition.is_public == True,  # noqa: E712
            Competition.status.in_([CompetitionStatus.UPCOMING.value, CompetitionStatus.ACTIVE.value]),
            Competition.id.not_in(joined),
        )
        .order_by(Competition.start_date, Competition.id)
        .limit(limit)
        .offset(offset)
    )
    return [competition_to_dict(c, participant_count=count) for c, count in result.all()]


async def count_recent_competitions(session: AsyncSession, creator_id: str) -> int:
    """Competitions created by this user in the last 24 hours."""
    result = await session.execute(
        select(func.count())
        .select_from(Competition)
        .where(
            Competition.creator_id == creator_id,
            Competition.created_at >= utcnow() - timedelta(days=1),
        )
    )
    return result.scalar() or 0


# ============================================================================
# Mutations
# ============================================================================

async def add_participant(
    session: AsyncSession, competition_id: str, user_id: str
) -> CompetitionParticipant:
    """Insert a participant row with zeroed standings."""
    participant = CompetitionParticipant(competition_id=competition_id, user_id=user_id)
    session.add(participant)
    await session.flush()
    return participant


async def create_competition(
    session: AsyncSession,
    creator_id: str,
    name: str,
    start_date: DateInput,
    end_date: DateInput,
    scoring_type: str = "ring_close",
    scoring_config: Optional[Dict] = None,
    is_public: bool = False,
    repeat_option: Optional[str] = None,
    invited_user_ids: Optional[List[str]] = None,
    today: Optional[date] = None,
) -> Dict:
    """
    Create a competition and auto-join its creator.

    Type, description and initial status are derived from the dates.
    Invitations to ``invited_user_ids`` are best-effort: failures are logged
    and never fail the creation.

    Args:
        session: Database session
        creator_id: Creating user
        name: Competition name
        start_date: First day (inclusive)
        end_date: Last day (inclusive)
        scoring_type: ScoringType value
        scoring_config: Optional scoring configuration
        is_public: Whether anyone can discover and join
        repeat_option: RepeatOption value
        invited_user_ids: Users to invite
        today: Reference date for status derivation

    Returns:
        Dict with competition data and invitations_sent

    Raises:
        ValidationError: If any input is invalid or the daily limit is reached
    """
    name = _validate_name(name)
    start, end = normalize_date(start_date), normalize_date(end_date)
    _validate_dates(start, end)
    scoring = parse_scoring_type(scoring_type)
    validate_scoring_config(scoring, scoring_config)
    repeat = _parse_repeat_option(repeat_option)

    if await count_recent_competitions(session, creator_id) >= MAX_COMPETITIONS_PER_DAY:
        raise ValidationError(
            f"You can create at most {MAX_COMPETITIONS_PER_DAY} competitions per day"
        )

    competition_type = classify_competition_type(start, end)
    competition = Competition(
        creator_id=creator_id,
        name=name,
        description=describe_competition(competition_type, inclusive_day_count(start, end)),
        start_date=start,
        end_date=end,
        type=competition_type.value,
        status=derive_initial_status(start, today).value,
        scoring_type=scoring.value,
        scoring_config=scoring_config or None,
        is_public=bool(is_public),
        repeat_option=repeat.value,
    )
    session.add(competition)
    await session.flush()

    await add_participant(session, competition.id, creator_id)
    logger.info(
        f"Created {competition.type} competition {competition.id} ({competition.status}) "
        f"by user {creator_id}"
    )

    invitations_sent = 0
    if invited_user_ids:
        try:
            async with session.begin_nested():
                invitations = await invitation_service.create_competition_invitations(
                    session, competition.id, creator_id, invited_user_ids
                )
            invitations_sent = len(invitations)
        except Exception as e:
            logger.warning(f"Failed to send invitations for competition {competition.id}: {e}")

    data = competition_to_dict(competition, participant_count=1)
    data["invitations_sent"] = invitations_sent
    return data


async def update_competition(
    session: AsyncSession,
    competition_id: str,
    user_id: str,
    updates: Dict,
) -> Dict:
    """
    Apply creator edits, honoring the editability matrix.

    Type and description are recomputed whenever dates change.

    Raises:
        CompetitionNotFoundError: If the competition does not exist
        AuthorizationError: If the user is not the creator
        ValidationError: If a field may not change in the current status or
            the result is invalid
    """
    competition = await get_competition_or_404(session, competition_id)
    if competition.creator_id != user_id:
        raise AuthorizationError("Only the creator can update this competition")

    changed = {}
    for field, value in updates.items():
        if value is None:
            continue
        if field in ("start_date", "end_date"):
            value = normalize_date(value)
        if value != getattr(competition, field, None):
            changed[field] = value
    updates = changed
    check_editable(competition.status, updates.keys())

    if "name" in updates:
        competition.name = _validate_name(updates["name"])
    if "is_public" in updates:
        competition.is_public = bool(updates["is_public"])
    if "repeat_option" in updates:
        competition.repeat_option = _parse_repeat_option(updates["repeat_option"]).value
    if "scoring_type" in updates or "scoring_config" in updates:
        scoring = parse_scoring_type(updates.get("scoring_type", competition.scoring_type))
        config = updates.get("scoring_config", competition.scoring_config)
        validate_scoring_config(scoring, config)
        competition.scoring_type = scoring.value
        competition.scoring_config = config or None

    start = normalize_date(updates.get("start_date", competition.start_date))
    end = normalize_date(updates.get("end_date", competition.end_date))
    _validate_dates(start, end)
    competition.start_date = start
    competition.end_date = end

    competition_type = classify_competition_type(start, end)
    competition.type = competition_type.value
    competition.description = describe_competition(competition_type, inclusive_day_count(start, end))

    await session.flush()
    logger.info(f"Updated competition {competition_id}: {sorted(updates.keys())}")
    return competition_to_dict(competition)


async def delete_competition(session: AsyncSession, competition_id: str, user_id: str) -> bool:
    """
    Delete a competition. Participants, ledger rows and invitations cascade.

    Raises:
        CompetitionNotFoundError: If the competition does not exist
        AuthorizationError: If the user is not the creator
    """
    competition = await get_competition_or_404(session, competition_id)
    if competition.creator_id != user_id:
        raise AuthorizationError("Only the creator can delete this competition")

    await session.execute(delete(Competition).where(Competition.id == competition_id))
    await session.flush()
    logger.info(f"Deleted competition {competition_id} by user {user_id}")
    return True


async def join_public_competition(session: AsyncSession, competition_id: str, user_id: str) -> Dict:
    """
    Join a public competition that is upcoming or active.

    Records a competition_joined activity and notifies the other
    participants; both are fire-and-forget.

    Raises:
        CompetitionNotFoundError: If the competition does not exist
        AuthorizationError: If the competition is not public
        ValidationError: If it is completed or the user already joined
    """
    competition = await get_competition_or_404(session, competition_id)
    if not competition.is_public:
        raise AuthorizationError("Competition is not public")
    if competition.status == CompetitionStatus.COMPLETED.value:
        raise ValidationError("Competition is not joinable")
    if await is_participant(session, competition_id, user_id):
        raise ValidationError("Already a participant")

    others = await session.execute(
        select(CompetitionParticipant.user_id).where(
            CompetitionParticipant.competition_id == competition_id
        )
    )
    other_user_ids = [uid for uid in others.scalars().all() if uid != user_id]

    participant = await add_participant(session, competition_id, user_id)
    await announce_join(session, competition, user_id, other_user_ids)
    return {"competition_id": competition_id, "participant_id": participant.id}


async def announce_join(
    session: AsyncSession, competition: Competition, user_id: str, other_user_ids: List[str]
) -> None:
    """Activity entry plus a notification to every other participant."""
    await notification_service.record_activity(
        session,
        user_id,
        ActivityType.COMPETITION_JOINED,
        {"competition_id": competition.id, "competition_name": competition.name},
    )

    profile = await session.get(Profile, user_id)
    display_name = (profile.full_name or profile.username) if profile else None
    display_name = display_name or "Someone"
    for other_id in other_user_ids:
        await notification_service.notify(
            session,
            NotificationType.COMPETITION_JOINED,
            other_id,
            {
                "message": f"{display_name} joined {competition.name}",
                "competition_id": competition.id,
                "user_id": user_id,
            },
        )
