"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Profiles, competitions, participants, the daily ledger, invitations,
notifications and the activity feed.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(conn, table_name: str) -> bool:
    """Check if a table exists."""
    result = conn.execute(
        text(
            "SELECT EXISTS (SELECT FROM information_schema.tables WHERE table_name = :table_name)"
        ),
        {"table_name": table_name},
    )
    return result.scalar()


def upgrade() -> None:
    """Create all competition tables."""
    conn = op.get_bind()

    if not _table_exists(conn, "profiles"):
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("username", sa.String(50), nullable=True, unique=True),
            sa.Column("full_name", sa.String(100), nullable=True),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("subscription_tier", sa.String(20), nullable=True, server_default="starter"),
            sa.Column("move_goal", sa.Integer(), nullable=False, server_default="400"),
            sa.Column("exercise_goal", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("stand_goal", sa.Integer(), nullable=False, server_default="12"),
            sa.Column("utc_offset_hours", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if not _table_exists(conn, "competitions"):
        op.create_table(
            "competitions",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("creator_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
            sa.Column("name", sa.String(100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("type", sa.String(20), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="upcoming"),
            sa.Column("scoring_type", sa.String(20), nullable=False, server_default="ring_close"),
            sa.Column("scoring_config", JSONB(), nullable=True),
            sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("repeat_option", sa.String(20), nullable=False, server_default="none"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("end_date > start_date", name="ck_competitions_end_after_start"),
        )
        op.create_index("idx_competitions_status_start", "competitions", ["status", "start_date"])
        op.create_index("idx_competitions_public", "competitions", ["is_public", "status"])
        op.create_index("idx_competitions_creator", "competitions", ["creator_id", "created_at"])

    if not _table_exists(conn, "competition_participants"):
        op.create_table(
            "competition_participants",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "competition_id",
                sa.String(36),
                sa.ForeignKey("competitions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("user_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
            sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("score_locked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("move_calories", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("exercise_minutes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("stand_hours", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("step_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("move_progress", sa.Float(), nullable=False, server_default="0"),
            sa.Column("exercise_progress", sa.Float(), nullable=False, server_default="0"),
            sa.Column("stand_progress", sa.Float(), nullable=False, server_default="0"),
            sa.UniqueConstraint("competition_id", "user_id", name="uq_participant_competition_user"),
        )
        op.create_index("idx_participants_user", "competition_participants", ["user_id"])
        op.create_index(
            "idx_participants_points", "competition_participants", ["competition_id", "total_points"]
        )

    if not _table_exists(conn, "competition_daily_data"):
        op.create_table(
            "competition_daily_data",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "competition_id",
                sa.String(36),
                sa.ForeignKey("competitions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "participant_id",
                sa.String(36),
                sa.ForeignKey("competition_participants.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("user_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("move_calories", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("exercise_minutes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("stand_hours", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("step_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("distance_meters", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("workouts_completed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("synced_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint(
                "competition_id", "user_id", "date", name="uq_daily_data_competition_user_date"
            ),
        )
        op.create_index("idx_daily_data_participant", "competition_daily_data", ["participant_id"])

    if not _table_exists(conn, "competition_invitations"):
        op.create_table(
            "competition_invitations",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "competition_id",
                sa.String(36),
                sa.ForeignKey("competitions.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("inviter_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
            sa.Column("invitee_id", sa.String(36), sa.ForeignKey("profiles.id"), nullable=False),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
            sa.Column("invited_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index(
            "idx_invitations_invitee_status", "competition_invitations", ["invitee_id", "status"]
        )
        op.create_index("idx_invitations_competition", "competition_invitations", ["competition_id"])

    if not _table_exists(conn, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "user_id",
                sa.String(36),
                sa.ForeignKey("profiles.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("data", sa.Text(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(
            "idx_notifications_user_unread", "notifications", ["user_id", "is_read", "created_at"]
        )

    if not _table_exists(conn, "activity_feed"):
        op.create_table(
            "activity_feed",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "user_id",
                sa.String(36),
                sa.ForeignKey("profiles.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("activity_type", sa.String(50), nullable=False),
            sa.Column("metadata", JSONB(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("idx_activity_feed_user_created", "activity_feed", ["user_id", "created_at"])
        op.create_index("idx_activity_feed_type", "activity_feed", ["activity_type"])


def downgrade() -> None:
    """Drop all competition tables."""
    op.drop_table("activity_feed")
    op.drop_table("notifications")
    op.drop_table("competition_invitations")
    op.drop_table("competition_daily_data")
    op.drop_table("competition_participants")
    op.drop_table("competitions")
    op.drop_table("profiles")
