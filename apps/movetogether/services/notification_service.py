"""
Notification and activity-feed side effects.

Everything here is fire-and-forget from the caller's point of view: a failed
notification is logged and never rolls back or fails the operation that
triggered it.
"""

from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from movetogether.database.models import ActivityFeedEntry, Notification, NotificationType
import json
import logging

logger = logging.getLogger(__name__)

_TITLES = {
    NotificationType.COMPETITION_INVITE.value: "Competition Invite",
    NotificationType.COMPETITION_JOINED.value: "New Competitor",
    NotificationType.COMPETITION_WON.value: "You Won!",
}


async def create_notification(
    session: AsyncSession,
    user_id: str,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
) -> Dict:
    """
    Create a single notification for a user.

    Args:
        session: Database session
        user_id: ID of the user to notify
        type: Notification type (NotificationType enum value)
        title: Notification title
        message: Notification message text
        data: Optional JSON metadata (dict will be serialized to JSON string)

    Returns:
        Dict containing the created notification data

    Raises:
        ValueError: If required fields are missing
    """
    if not user_id:
        raise ValueError("user_id is required")
    if not type:
        raise ValueError("type is required")
    if not title:
        raise ValueError("title is required")
    if not message:
        raise ValueError("message is required")

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=json.dumps(data) if data is not None else None,
        is_read=False,
    )
    session.add(notification)
    await session.flush()

    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": data,
        "is_read": notification.is_read,
    }


async def notify(
    session: AsyncSession,
    event_type: str,
    recipient_user_id: str,
    payload: Dict,
) -> Optional[Dict]:
    """
    Fire-and-forget notification.

    The insert runs inside a SAVEPOINT so a failure only rolls back the
    notification itself. Returns the notification dict, or None on failure.

    Args:
        session: Database session
        event_type: NotificationType value
        recipient_user_id: User to notify
        payload: Must contain "message"; everything else is stored as data
    """
    event_type = getattr(event_type, "value", event_type)
    payload = dict(payload or {})
    message = payload.pop("message", None) or event_type.replace("_", " ")
    title = payload.pop("title", None) or _TITLES.get(event_type, "MoveTogether")
    try:
        async with session.begin_nested():
            return await create_notification(
                session=session,
                user_id=recipient_user_id,
                type=event_type,
                title=title,
                message=message,
                data=payload or None,
            )
    except Exception as e:
        logger.warning(f"Failed to send {event_type} notification to user {recipient_user_id}: {e}")
        return None


async def record_activity(
    session: AsyncSession,
    user_id: str,
    activity_type: str,
    metadata: Optional[Dict] = None,
) -> bool:
    """
    Fire-and-forget activity-feed entry. Returns True if it was written.
    """
    activity_type = getattr(activity_type, "value", activity_type)
    try:
        async with session.begin_nested():
            session.add(
                ActivityFeedEntry(
                    user_id=user_id,
                    activity_type=activity_type,
                    activity_metadata=metadata or {},
                )
            )
            await session.flush()
        return True
    except Exception as e:
        logger.warning(f"Failed to record {activity_type} activity for user {user_id}: {e}")
        return False


async def has_activity(
    session: AsyncSession, user_id: str, activity_type: str, competition_id: str
) -> bool:
    """Whether an activity of this type already exists for the competition."""
    activity_type = getattr(activity_type, "value", activity_type)
    result = await session.execute(
        select(func.count())
        .select_from(ActivityFeedEntry)
        .where(
            ActivityFeedEntry.user_id == user_id,
            ActivityFeedEntry.activity_type == activity_type,
            ActivityFeedEntry.activity_metadata["competition_id"].astext == competition_id,
        )
    )
    return (result.scalar() or 0) > 0
