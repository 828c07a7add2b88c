"""
Bearer-token authentication for the competition routes.

The identity provider issues JWTs whose ``user_id`` claim is the profile id;
the profile row is loaded on every request so tier and goals are always
read server-side.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from movetogether.database.db import get_db_session
from movetogether.services import auth_service, user_service

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def resolve_user(session: AsyncSession, token: str) -> Optional[dict]:
    """Profile dict for a bearer token, or None if the token or user is invalid."""
    claims = auth_service.verify_token(token)
    if not claims or claims.get("user_id") is None:
        return None
    return await user_service.get_user_by_id(session, str(claims["user_id"]))


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Authenticated profile for the request.

    Raises:
        HTTPException: 401 if the token is invalid or the profile is missing
    """
    claims = auth_service.verify_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid authentication token")
    if claims.get("user_id") is None:
        raise _unauthorized("Invalid token payload")

    user = await user_service.get_user_by_id(session, str(claims["user_id"]))
    if user is None:
        raise _unauthorized("User not found")
    return user
