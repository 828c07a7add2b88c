"""
User service layer for profile lookups.
"""

from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from movetogether.database.models import Profile, SubscriptionTier


def profile_to_dict(profile: Profile) -> Dict:
    return {
        "id": profile.id,
        "username": profile.username,
        "full_name": profile.full_name,
        "email": profile.email,
        "subscription_tier": profile.subscription_tier or SubscriptionTier.STARTER.value,
        "move_goal": profile.move_goal,
        "exercise_goal": profile.exercise_goal,
        "stand_goal": profile.stand_goal,
        "utc_offset_hours": profile.utc_offset_hours,
    }


async def get_user_by_id(session: AsyncSession, user_id: str) -> Optional[Dict]:
    """
    Get a user's profile by ID.

    Args:
        session: Database session
        user_id: Profile ID (same as the auth provider's user ID)

    Returns:
        Profile dict or None if not found
    """
    result = await session.execute(select(Profile).where(Profile.id == str(user_id)))
    profile = result.scalar_one_or_none()
    return profile_to_dict(profile) if profile else None


async def create_profile(
    session: AsyncSession,
    user_id: Optional[str] = None,
    username: Optional[str] = None,
    full_name: Optional[str] = None,
    subscription_tier: str = SubscriptionTier.STARTER.value,
    move_goal: int = 400,
    exercise_goal: int = 30,
    stand_goal: int = 12,
    utc_offset_hours: Optional[int] = None,
) -> Profile:
    """Create a profile row with the given goals and tier."""
    profile = Profile(
        username=username,
        full_name=full_name,
        subscription_tier=subscription_tier,
        move_goal=move_goal,
        exercise_goal=exercise_goal,
        stand_goal=stand_goal,
        utc_offset_hours=utc_offset_hours,
    )
    if user_id:
        profile.id = user_id
    session.add(profile)
    await session.flush()
    return profile
