"""
Competition invitation service.
"""

from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database.models import (
    ActivityType,
    Competition,
    CompetitionInvitation,
    CompetitionParticipant,
    CompetitionStatus,
    InvitationStatus,
    NotificationType,
    Profile,
)
from movetogether.services import notification_service
from movetogether.services.errors import (
    AuthorizationError,
    CompetitionNotFoundError,
    InvitationNotFoundError,
    ValidationError,
)
from movetogether.utils.datetime_utils import utcnow
import logging

logger = logging.getLogger(__name__)


def invitation_to_dict(invitation: CompetitionInvitation, competition: Competition = None) -> Dict:
    data = {
        "id": invitation.id,
        "competition_id": invitation.competition_id,
        "inviter_id": invitation.inviter_id,
        "invitee_id": invitation.invitee_id,
        "status": invitation.status,
        "invited_at": invitation.invited_at.isoformat() if invitation.invited_at else None,
        "responded_at": invitation.responded_at.isoformat() if invitation.responded_at else None,
    }
    if competition is not None:
        data["competition_name"] = competition.name
        data["start_date"] = competition.start_date.isoformat()
        data["end_date"] = competition.end_date.isoformat()
    return data


async def create_competition_invitations(
    session: AsyncSession,
    competition_id: str,
    inviter_id: str,
    invitee_ids: List[str],
) -> List[Dict]:
    """
    Invite users to a competition.

    The inviter, existing participants and users with a pending invitation
    are skipped. Each new invitee gets a competition_invite notification.

    Args:
        session: Database session
        competition_id: Competition ID
        inviter_id: User sending the invitations (must be a participant)
        invitee_ids: Users to invite

    Returns:
        List of created invitation dicts (may be empty)

    Raises:
        CompetitionNotFoundError: If the competition does not exist
        AuthorizationError: If the inviter is not a participant
        ValidationError: If the competition is completed
    """
    competition = await session.get(Competition, competition_id)
    if competition is None:
        raise CompetitionNotFoundError()
    if competition.status == CompetitionStatus.COMPLETED.value:
        raise ValidationError("Cannot invite users to a completed competition")

    participants = await session.execute(
        select(CompetitionParticipant.user_id).where(
            CompetitionParticipant.competition_id == competition_id
        )
    )
    participant_ids = set(participants.scalars().all())
    if inviter_id not in participant_ids:
        raise AuthorizationError("Only participants can invite users")

    pending = await session.execute(
        select(CompetitionInvitation.invitee_id).where(
            CompetitionInvitation.competition_id == competition_id,
            CompetitionInvitation.status == InvitationStatus.PENDING.value,
        )
    )
    already_invited = set(pending.scalars().all())

    # Preserve order, drop duplicates within the request
    candidates = []
    for invitee_id in invitee_ids:
        if invitee_id == inviter_id or invitee_id in participant_ids:
            continue
        if invitee_id in already_invited or invitee_id in candidates:
            continue
        candidates.append(invitee_id)

    if not candidates:
        return []

    inviter = await session.get(Profile, inviter_id)
    inviter_name = (inviter.full_name or inviter.username) if inviter else None
    inviter_name = inviter_name or "A friend"

    invitations = []
    for invitee_id in candidates:
        invitation = CompetitionInvitation(
            competition_id=competition_id,
            inviter_id=inviter_id,
            invitee_id=invitee_id,
            status=InvitationStatus.PENDING.value,
        )
        session.add(invitation)
        invitations.append(invitation)
    await session.flush()

    for invitation in invitations:
        await notification_service.notify(
            session,
            NotificationType.COMPETITION_INVITE,
            invitation.invitee_id,
            {
                "message": f"{inviter_name} invited you to join {competition.name}",
                "competition_id": competition_id,
                "invitation_id": invitation.id,
            },
        )

    logger.info(f"Created {len(invitations)} invitation(s) for competition {competition_id}")
    return [invitation_to_dict(i) for i in invitations]


async def _get_invitation_for_invitee(
    session: AsyncSession, invitation_id: str, user_id: str
) -> CompetitionInvitation:
    invitation = await session.get(CompetitionInvitation, invitation_id)
    if invitation is None:
        raise InvitationNotFoundError()
    if invitation.invitee_id != user_id:
        raise AuthorizationError("This invitation is not for you")
    if invitation.status != InvitationStatus.PENDING.value:
        raise ValidationError(f"Invitation already {invitation.status}")
    return invitation


async def accept_invitation(session: AsyncSession, invitation_id: str, user_id: str) -> Dict:
    """
    Accept a pending invitation and join the competition.

    Raises:
        InvitationNotFoundError: If the invitation does not exist
        AuthorizationError: If the user is not the invitee
        ValidationError: If it is no longer pending or the competition ended
    """
    invitation = await _get_invitation_for_invitee(session, invitation_id, user_id)
    competition = await session.get(Competition, invitation.competition_id)
    if competition is None:
        raise CompetitionNotFoundError()
    if competition.status == CompetitionStatus.COMPLETED.value:
        raise ValidationError("Competition has already ended")

    invitation.status = InvitationStatus.ACCEPTED.value
    invitation.responded_at = utcnow()

    existing = await session.execute(
        select(CompetitionParticipant.id).where(
            CompetitionParticipant.competition_id == competition.id,
            CompetitionParticipant.user_id == user_id,
        )
    )
    if existing.scalar_one_or_none() is None:
        session.add(CompetitionParticipant(competition_id=competition.id, user_id=user_id))
    await session.flush()

    await notification_service.record_activity(
        session,
        user_id,
        ActivityType.COMPETITION_JOINED,
        {"competition_id": competition.id, "competition_name": competition.name},
    )
    logger.info(f"User {user_id} accepted invitation {invitation_id}")
    return invitation_to_dict(invitation, competition)


async def decline_invitation(session: AsyncSession, invitation_id: str, user_id: str) -> Dict:
    """Decline a pending invitation."""
    invitation = await _get_invitation_for_invitee(session, invitation_id, user_id)
    invitation.status = InvitationStatus.DECLINED.value
    invitation.responded_at = utcnow()
    await session.flush()
    return invitation_to_dict(invitation)


async def get_pending_invitations(session: AsyncSession, user_id: str) -> List[Dict]:
    """Pending invitations for a user, newest first."""
    result = await session.execute(
        select(CompetitionInvitation, Competition)
        .join(Competition, Competition.id == CompetitionInvitation.competition_id)
        .where(
            CompetitionInvitation.invitee_id == user_id,
            CompetitionInvitation.status == InvitationStatus.PENDING.value,
        )
        .order_by(CompetitionInvitation.invited_at.desc())
    )
    return [invitation_to_dict(inv, comp) for inv, comp in result.all()]
