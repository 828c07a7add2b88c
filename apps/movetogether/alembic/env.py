"""
Alembic entry point for the competitions schema (``alembic upgrade head``).

Uses the same DATABASE_URL as the application, through the asyncpg driver.
"""

from logging.config import fileConfig
import asyncio
import logging
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from movetogether.database.db import Base, DATABASE_URL
from movetogether.database import models  # noqa: F401

logger = logging.getLogger(__name__)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _redacted_url() -> str:
    return DATABASE_URL.split("@", 1)[1] if "@" in DATABASE_URL else "configured"


def _configure(**kwargs) -> None:
    # compare_type catches String length and JSONB changes in autogenerate
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    """Emit SQL for the pending migrations without connecting."""
    _configure(url=DATABASE_URL, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _run_sync_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def _run_async_migrations() -> None:
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = DATABASE_URL
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync_migrations)
    except Exception as e:
        logger.error(f"Migration against {_redacted_url()} failed: {e}", exc_info=True)
        raise
    finally:
        await engine.dispose()


def run_migrations_online() -> None:
    """Apply pending migrations to the configured database."""
    logger.info(f"Migrating {_redacted_url()}")
    asyncio.run(_run_async_migrations())
    logger.info("Migrations completed")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
