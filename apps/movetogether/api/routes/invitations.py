"""Competition invitation route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.api.auth_dependencies import get_current_user
from movetogether.api.routes import to_http_exception
from movetogether.database.db import get_db_session
from movetogether.services import invitation_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/invitations")
async def get_pending_invitations(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Pending competition invitations for the current user."""
    try:
        return await invitation_service.get_pending_invitations(session, user["id"])
    except Exception as e:
        logger.error(f"Error getting invitations: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting invitations")


@router.post("/api/invitations/{invitation_id}/accept")
async def accept_invitation(
    invitation_id: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept an invitation and join the competition."""
    try:
        return await invitation_service.accept_invitation(session, invitation_id, user["id"])
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error accepting invitation {invitation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error accepting invitation")


@router.post("/api/invitations/{invitation_id}/decline")
async def decline_invitation(
    invitation_id: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Decline an invitation."""
    try:
        return await invitation_service.decline_invitation(session, invitation_id, user["id"])
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error declining invitation {invitation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error declining invitation")
