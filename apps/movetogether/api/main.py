"""
MoveTogether Competitions API Server

FastAPI server for fitness competitions: health-data sync, standings,
competition lifecycle and the paid leave flow.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from movetogether.api.routes import router, limiter as routes_limiter
from movetogether.database import db
from movetogether.services.status_service import get_competition_status_service

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging() -> None:
    """Root logging from LOG_LEVEL (default INFO); unknown names fall back to INFO."""
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # SQL echo is controlled by SQL_ECHO, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables, run the status worker, release the pool on exit."""
    logger.info("Starting MoveTogether API")

    try:
        await db.init_database()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    status_worker = get_competition_status_service()
    try:
        status_worker.start()
    except Exception as e:
        logger.error(f"Failed to start competition status worker: {e}", exc_info=True)

    yield

    logger.info("Shutting down MoveTogether API")
    status_worker.stop()
    await db.dispose_engine()


app = FastAPI(
    title="MoveTogether Competitions API",
    description="Competition scoring, standings, membership and the paid leave flow",
    version="1.0.0",
    lifespan=lifespan,
)

# Per-IP limits (competition creation); disabled when ENV=test
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Mobile and web origins, comma-separated
allowed_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:8081").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
