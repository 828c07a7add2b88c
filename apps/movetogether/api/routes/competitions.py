"""Competition route handlers."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.api.auth_dependencies import get_current_user
from movetogether.api.routes import limiter, to_http_exception
from movetogether.database.db import get_db_session
from movetogether.models.schemas import (
    CompetitionCreateRequest,
    CompetitionResponse,
    CompetitionUpdateRequest,
    InvitationCreateRequest,
    SyncRequest,
)
from movetogether.services import (
    competition_service,
    invitation_service,
    ledger_service,
    standings_service,
)
from movetogether.services.errors import ValidationError
from movetogether.services.health_provider import HealthSample

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/competitions", response_model=CompetitionResponse)
@limiter.limit("10/day")
async def create_competition(
    request: Request,
    payload: CompetitionCreateRequest,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a competition; the creator joins automatically."""
    try:
        return await competition_service.create_competition(
            session,
            creator_id=user["id"],
            name=payload.name,
            start_date=payload.start_date,
            end_date=payload.end_date,
            scoring_type=payload.scoring_type,
            scoring_config=payload.scoring_config,
            is_public=payload.is_public,
            repeat_option=payload.repeat_option,
            invited_user_ids=payload.invited_user_ids,
        )
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error creating competition: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating competition")


@router.get("/api/competitions/mine")
async def list_my_competitions(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Competitions the current user participates in."""
    try:
        return await competition_service.list_user_competitions(session, user["id"])
    except Exception as e:
        logger.error(f"Error listing competitions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing competitions")


@router.get("/api/competitions/public")
async def list_public_competitions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Discover public competitions that are upcoming or active."""
    try:
        return await competition_service.list_public_competitions(
            session, user["id"], limit=limit, offset=offset
        )
    except Exception as e:
        logger.error(f"Error listing public competitions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing public competitions")


@router.get("/api/competitions/{competition_id}", response_model=CompetitionResponse)
async def get_competition(
    competition_id: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Competition details with its leaderboard."""
    try:
        return await competition_service.get_competition(session, competition_id, user["id"])
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting competition")


@router.patch("/api/competitions/{competition_id}", response_model=CompetitionResponse)
async def update_competition(
    competition_id: str,
    payload: CompetitionUpdateRequest,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Edit a competition (creator only; allowed fields depend on status)."""
    try:
        return await competition_service.update_competition(
            session, competition_id, user["id"], payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error updating competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating competition")


@router.delete("/api/competitions/{competition_id}")
async def delete_competition(
    competition_id: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a competition (creator only)."""
    try:
        await competition_service.delete_competition(session, competition_id, user["id"])
        return {"success": True}
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error deleting competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting competition")


@router.post("/api/competitions/{competition_id}/join")
async def join_competition(
    competition_id: str,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Join a public competition."""
    try:
        return await competition_service.join_public_competition(session, competition_id, user["id"])
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error joining competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error joining competition")


@router.post("/api/competitions/{competition_id}/sync")
async def sync_competition(
    competition_id: str,
    payload: SyncRequest,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Upload daily health samples and recompute the caller's standing."""
    try:
        competition = await competition_service.get_competition_or_404(session, competition_id)
        samples = [HealthSample.from_dict(record.model_dump()) for record in payload.records]
        return await standings_service.sync_competition_health_data(
            session,
            competition_id,
            user["id"],
            competition.start_date,
            competition.end_date,
            samples,
        )
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error syncing competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error syncing health data")


@router.get("/api/competitions/{competition_id}/daily-data")
async def get_daily_data(
    competition_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's ledger rows for a competition."""
    try:
        if await ledger_service.get_participant(session, competition_id, user["id"]) is None:
            raise ValidationError("Not a participant in this competition")
        rows = await ledger_service.get_daily_data(
            session, competition_id, user["id"], start_date, end_date
        )
        return [ledger_service.daily_data_to_dict(row) for row in rows]
    except ValidationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error getting daily data for {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting daily data")


@router.post("/api/competitions/{competition_id}/invitations")
async def invite_to_competition(
    competition_id: str,
    payload: InvitationCreateRequest,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Invite users to a competition."""
    try:
        invitations = await invitation_service.create_competition_invitations(
            session, competition_id, user["id"], payload.invitee_ids
        )
        return {"invitations": invitations, "count": len(invitations)}
    except ValueError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Error inviting to competition {competition_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error sending invitations")
