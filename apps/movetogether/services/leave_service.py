"""
Leave-competition gate.

Starter-tier users pay a one-time fee to leave; paid tiers leave for free;
creators can never leave (they delete instead). The tier always comes from
the profiles table, never from the request.
"""

from typing import Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database.models import (
    Competition,
    CompetitionParticipant,
    Profile,
    SubscriptionTier,
)
from movetogether.services.errors import (
    CompetitionNotFoundError,
    CreatorCannotLeaveError,
    NotFoundError,
    ParticipantNotFoundError,
    PaymentRequiredError,
    PaymentVerificationError,
    PersistenceError,
)
from movetogether.services.payment_service import PaymentVerifier, get_payment_verifier
from movetogether.utils.constants import LEAVE_PRODUCT_ID
import logging

logger = logging.getLogger(__name__)

PAID_TIERS = frozenset({SubscriptionTier.MOVER.value, SubscriptionTier.CRUSHER.value})


def resolve_tier(raw_tier: Optional[str]) -> SubscriptionTier:
    """Map a stored tier to the enum; missing or unknown values are starter."""
    try:
        return SubscriptionTier(raw_tier or SubscriptionTier.STARTER.value)
    except ValueError:
        logger.warning(f"Unknown subscription tier {raw_tier!r}, treating as starter")
        return SubscriptionTier.STARTER


async def leave_competition(
    session: AsyncSession,
    competition_id: str,
    user_id: str,
    transaction_id: Optional[str] = None,
    verifier: Optional[PaymentVerifier] = None,
) -> Dict:
    """
    Remove a participant from a competition, collecting payment if required.

    Every rejection happens before any write. The removal itself is one
    DELETE committed here, so it is all-or-nothing.

    Args:
        session: Database session
        competition_id: Competition to leave
        user_id: Authenticated user (never taken from the body)
        transaction_id: Receipt transaction ID for starter-tier users
        verifier: Payment verifier (defaults to the global one)

    Returns:
        {"success": True}

    Raises:
        ParticipantNotFoundError: If the user is not a participant
        CompetitionNotFoundError: If the competition does not exist
        CreatorCannotLeaveError: If the user created the competition
        NotFoundError: If the user has no profile
        PaymentRequiredError: If a starter user has not paid
        PaymentVerificationError: If the receipt could not be verified
        PersistenceError: If the removal failed
    """
    participant_result = await session.execute(
        select(CompetitionParticipant.id).where(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.user_id == user_id,
        )
    )
    participant_id = participant_result.scalar_one_or_none()
    if participant_id is None:
        raise ParticipantNotFoundError()

    competition_result = await session.execute(
        select(Competition.creator_id).where(Competition.id == competition_id)
    )
    creator_id = competition_result.scalar_one_or_none()
    if creator_id is None:
        raise CompetitionNotFoundError()
    if creator_id == user_id:
        raise CreatorCannotLeaveError()

    tier_result = await session.execute(
        select(Profile.id, Profile.subscription_tier).where(Profile.id == user_id)
    )
    profile_row = tier_result.first()
    if profile_row is None:
        raise NotFoundError("Profile not found")
    tier = resolve_tier(profile_row.subscription_tier)

    payment_verified = False
    if tier.value not in PAID_TIERS:
        if not transaction_id:
            logger.info(f"Payment required for user {user_id} to leave competition {competition_id}")
            raise PaymentRequiredError()

        verifier = verifier or get_payment_verifier()
        verification = await verifier.verify_purchase(user_id, transaction_id, LEAVE_PRODUCT_ID)
        if not verification.valid:
            logger.warning(
                f"Payment verification failed for user {user_id}, "
                f"competition {competition_id}: {verification.error}"
            )
            raise PaymentVerificationError(
                verification.error or "Payment verification failed",
                retryable=verification.retryable,
            )
        payment_verified = True

    try:
        await session.execute(
            delete(CompetitionParticipant).where(CompetitionParticipant.id == participant_id)
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        if payment_verified:
            logger.critical(
                f"Payment accepted but removal failed: user {user_id}, "
                f"competition {competition_id}, transaction {transaction_id}: {e}"
            )
        else:
            logger.error(f"Failed to remove user {user_id} from competition {competition_id}: {e}")
        raise PersistenceError("Failed to leave competition", cause=e)

    logger.info(
        f"User {user_id} left competition {competition_id} "
        f"(tier={tier.value}, paid={payment_verified})"
    )
    return {"success": True}
