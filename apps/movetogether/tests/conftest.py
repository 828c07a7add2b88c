"""
Shared pytest configuration for backend tests.

Uses PostgreSQL for consistency with production environment (the ledger
relies on INSERT ... ON CONFLICT and JSONB). Database tests are skipped when
the test database is unreachable; pure unit tests always run.

SAFETY: This module REFUSES to run against any database whose name does not
contain the substring "test".
"""

import os

os.environ.setdefault("ENV", "test")

import asyncio  # noqa: E402
import uuid  # noqa: E402
from datetime import date, timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402
from movetogether.database.db import Base  # noqa: E402


def _resolve_test_database_url() -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if the resolved URL does not point to a database
    whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "")

    # Test-safe defaults only (port 5433, db movetogether_test)
    if not url:
        url = (
            f"postgresql+asyncpg://"
            f"{os.getenv('POSTGRES_USER', 'movetogether')}:"
            f"{os.getenv('POSTGRES_PASSWORD', 'movetogether')}@"
            f"{os.getenv('POSTGRES_HOST', 'localhost')}:"
            f"{os.getenv('POSTGRES_TEST_PORT', '5433')}/"
            f"{os.getenv('POSTGRES_TEST_DB', 'movetogether_test')}"
        )

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"{'=' * 70}"
        )

    return url


TEST_DATABASE_URL = _resolve_test_database_url()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine; skip the test if Postgres is unreachable."""
    # NullPool avoids "Future attached to different loop" errors across tests
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=NullPool,
        pool_pre_ping=True,
    )

    try:
        async with engine.begin() as conn:
            from movetogether.database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
    except (OSError, SQLAlchemyError) as e:
        await engine.dispose()
        pytest.skip(f"Test database unavailable: {e}")

    # Code using db.AsyncSessionLocal() (status worker) must hit the test DB
    from movetogether.database import db

    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    try:
        await asyncio.sleep(0.05)
        await engine.dispose(close=True)
    except Exception:
        pass  # Ignore cleanup errors


@pytest_asyncio.fixture
async def db_session(test_engine):
    """
    Create a test database session with automatic cleanup.
    Tables are truncated before each test to ensure clean state.
    """
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with test_engine.connect() as truncate_conn:
        async with truncate_conn.begin():
            table_list = ", ".join(f'"{table.name}"' for table in Base.metadata.sorted_tables)
            await truncate_conn.execute(text(f"TRUNCATE TABLE {table_list} RESTART IDENTITY CASCADE"))

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            try:
                await session.rollback()
            except Exception:
                pass
            await session.close()


# ---------------------------------------------------------------------------
# Shared factories
# ---------------------------------------------------------------------------


def new_user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def today():
    """A fixed reference date (a Wednesday) used by date-sensitive tests."""
    return date(2026, 3, 4)


@pytest.fixture
def make_profile(db_session):
    """Factory: create a profile with the given tier and goals."""
    from movetogether.services import user_service

    async def _make(**kwargs):
        kwargs.setdefault("user_id", new_user_id())
        kwargs.setdefault("username", f"user_{uuid.uuid4().hex[:8]}")
        return await user_service.create_profile(db_session, **kwargs)

    return _make


@pytest.fixture
def make_competition(db_session):
    """Factory: insert a competition directly (bypasses creation rules)."""
    from movetogether.database.models import Competition, CompetitionParticipant

    async def _make(creator_id, participant_ids=(), start=None, end=None, **kwargs):
        start = start or date(2026, 3, 1)
        end = end or start + timedelta(days=6)
        competition = Competition(
            creator_id=creator_id,
            name=kwargs.pop("name", "Test Competition"),
            start_date=start,
            end_date=end,
            type=kwargs.pop("type", "weekly"),
            status=kwargs.pop("status", "active"),
            scoring_type=kwargs.pop("scoring_type", "ring_close"),
            is_public=kwargs.pop("is_public", False),
            **kwargs,
        )
        db_session.add(competition)
        await db_session.flush()
        for user_id in (creator_id, *participant_ids):
            db_session.add(CompetitionParticipant(competition_id=competition.id, user_id=user_id))
        await db_session.flush()
        return competition

    return _make
