"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from movetogether.services.errors import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------------
# Service error mapping
# ---------------------------------------------------------------------------
def to_http_exception(error: ValueError) -> HTTPException:
    """Map a service-layer error to the matching HTTP status."""
    if isinstance(error, PersistenceError):
        return HTTPException(status_code=500, detail=str(error))
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, AuthorizationError):
        return HTTPException(status_code=403, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from movetogether.api.routes.health import router as health_router  # noqa: E402
from movetogether.api.routes.leave import router as leave_router  # noqa: E402
from movetogether.api.routes.competitions import router as competitions_router  # noqa: E402
from movetogether.api.routes.invitations import router as invitations_router  # noqa: E402

router = APIRouter()
router.include_router(health_router)
# Registered before competitions so /leave is not captured by /{competition_id}
router.include_router(leave_router)
router.include_router(competitions_router)
router.include_router(invitations_router)
