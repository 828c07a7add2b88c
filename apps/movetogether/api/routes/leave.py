"""
Leave-competition route.

Responses use ``{"error": ...}`` bodies and return 200 for the
payment-required outcome, which the mobile client treats as a prompt to
purchase and retry rather than as a failure.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.api.auth_dependencies import resolve_user
from movetogether.database.db import get_db_session
from movetogether.models.schemas import LeaveCompetitionRequest, LeaveCompetitionResponse
from movetogether.services import leave_service
from movetogether.services.errors import (
    AuthorizationError,
    NotFoundError,
    PaymentRequiredError,
    PersistenceError,
)

logger = logging.getLogger(__name__)
router = APIRouter()

optional_bearer = HTTPBearer(auto_error=False)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _payment_response(error: PaymentRequiredError) -> JSONResponse:
    body = LeaveCompetitionResponse(
        success=False,
        error=str(error),
        requires_payment=True,
        amount=error.amount,
        currency=error.currency,
        product_id=error.product_id,
        retryable=getattr(error, "retryable", None),
    )
    return JSONResponse(status_code=200, content=body.model_dump(by_alias=True, exclude_none=True))


@router.post("/api/competitions/leave")
async def leave_competition(
    payload: Optional[LeaveCompetitionRequest] = Body(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    session: AsyncSession = Depends(get_db_session),
):
    """Leave a competition; starter-tier users must supply a verified payment."""
    if credentials is None:
        return _error(401, "No authorization header")

    user = await resolve_user(session, credentials.credentials)
    if user is None:
        return _error(401, "Unauthorized")

    if payload is None or not payload.competition_id:
        return _error(400, "Competition ID required")

    try:
        result = await leave_service.leave_competition(
            session,
            payload.competition_id,
            user["id"],
            transaction_id=payload.transaction_id,
        )
        return LeaveCompetitionResponse(**result).model_dump(by_alias=True, exclude_none=True)
    except PaymentRequiredError as e:
        return _payment_response(e)
    except PersistenceError as e:
        return _error(500, str(e))
    except NotFoundError as e:
        return _error(404, str(e))
    except AuthorizationError as e:
        return _error(403, str(e))
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.error(f"Error leaving competition: {e}", exc_info=True)
        return _error(500, "Internal server error")
