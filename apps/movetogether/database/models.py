"""
SQLAlchemy ORM models for the MoveTogether competition system.
"""

import enum
import uuid
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from movetogether.database.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class SubscriptionTier(str, enum.Enum):
    """Subscription tier enum. Only STARTER pays to leave a competition."""

    STARTER = "starter"
    MOVER = "mover"
    CRUSHER = "crusher"


class CompetitionType(str, enum.Enum):
    """Competition type derived from the date range."""

    WEEKEND = "weekend"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class CompetitionStatus(str, enum.Enum):
    """Competition lifecycle status."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class ScoringType(str, enum.Enum):
    """Rule used to turn a day of health metrics into points."""

    RING_CLOSE = "ring_close"
    PERCENTAGE = "percentage"
    RAW_NUMBERS = "raw_numbers"
    STEP_COUNT = "step_count"
    WORKOUT = "workout"


class RepeatOption(str, enum.Enum):
    """How a competition repeats after it ends."""

    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class InvitationStatus(str, enum.Enum):
    """Competition invitation status."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    COMPETITION_INVITE = "competition_invite"
    COMPETITION_JOINED = "competition_joined"
    COMPETITION_WON = "competition_won"


class ActivityType(str, enum.Enum):
    """Activity feed entry type."""

    COMPETITION_JOINED = "competition_joined"
    COMPETITION_WON = "competition_won"


class Profile(Base):
    """User profile. Authoritative source for subscription tier and ring goals."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(50), nullable=True, unique=True)
    full_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    subscription_tier = Column(String(20), default=SubscriptionTier.STARTER.value, nullable=True)
    move_goal = Column(Integer, default=400, nullable=False)
    exercise_goal = Column(Integer, default=30, nullable=False)
    stand_goal = Column(Integer, default=12, nullable=False)
    utc_offset_hours = Column(Integer, nullable=True)  # e.g. -8 for PST
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Competition(Base):
    """A time-bounded fitness competition."""

    __tablename__ = "competitions"

    id = Column(String(36), primary_key=True, default=_uuid)
    creator_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)  # Inclusive
    type = Column(String(20), nullable=False)  # CompetitionType value
    status = Column(String(20), default=CompetitionStatus.UPCOMING.value, nullable=False)
    scoring_type = Column(String(20), default=ScoringType.RING_CLOSE.value, nullable=False)
    scoring_config = Column(JSONB, nullable=True)  # workout_types, workout_metric
    is_public = Column(Boolean, default=False, nullable=False)
    repeat_option = Column(String(20), default=RepeatOption.NONE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    creator = relationship("Profile", foreign_keys=[creator_id])
    participants = relationship(
        "CompetitionParticipant",
        back_populates="competition",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_competitions_end_after_start"),
        Index("idx_competitions_status_start", "status", "start_date"),
        Index("idx_competitions_public", "is_public", "status"),
        Index("idx_competitions_creator", "creator_id", "created_at"),
    )


class CompetitionParticipant(Base):
    """Membership of a user in a competition, with denormalized standings."""

    __tablename__ = "competition_participants"

    id = Column(String(36), primary_key=True, default=_uuid)
    competition_id = Column(
        String(36), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    score_locked_at = Column(DateTime(timezone=True), nullable=True)

    # Aggregates (recomputed from competition_daily_data)
    total_points = Column(Integer, default=0, nullable=False)
    move_calories = Column(Integer, default=0, nullable=False)
    exercise_minutes = Column(Integer, default=0, nullable=False)
    stand_hours = Column(Integer, default=0, nullable=False)
    step_count = Column(Integer, default=0, nullable=False)
    move_progress = Column(Float, default=0.0, nullable=False)
    exercise_progress = Column(Float, default=0.0, nullable=False)
    stand_progress = Column(Float, default=0.0, nullable=False)

    # Relationships
    competition = relationship("Competition", back_populates="participants")
    profile = relationship("Profile", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="uq_participant_competition_user"),
        Index("idx_participants_user", "user_id"),
        Index("idx_participants_points", "competition_id", "total_points"),
    )


class CompetitionDailyData(Base):
    """One day of health metrics and points for a participant."""

    __tablename__ = "competition_daily_data"

    id = Column(String(36), primary_key=True, default=_uuid)
    competition_id = Column(
        String(36), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    participant_id = Column(
        String(36),
        ForeignKey("competition_participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    date = Column(Date, nullable=False)
    move_calories = Column(Integer, default=0, nullable=False)
    exercise_minutes = Column(Integer, default=0, nullable=False)
    stand_hours = Column(Integer, default=0, nullable=False)
    step_count = Column(Integer, default=0, nullable=False)
    distance_meters = Column(Integer, default=0, nullable=False)
    workouts_completed = Column(Integer, default=0, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    synced_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", "date", name="uq_daily_data_competition_user_date"),
        Index("idx_daily_data_participant", "participant_id"),
    )


class CompetitionInvitation(Base):
    """Invitation for a user to join a competition."""

    __tablename__ = "competition_invitations"

    id = Column(String(36), primary_key=True, default=_uuid)
    competition_id = Column(
        String(36), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False
    )
    inviter_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    invitee_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    status = Column(String(20), default=InvitationStatus.PENDING.value, nullable=False)
    invited_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_invitations_invitee_status", "invitee_id", "status"),
        Index("idx_invitations_competition", "competition_id"),
    )


class Notification(Base):
    """User notifications for in-app messaging."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)  # NotificationType enum value
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(Text, nullable=True)  # JSON string (competition_id, etc.)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read", "created_at"),
    )


class ActivityFeedEntry(Base):
    """Social activity feed entry (competition joined, competition won)."""

    __tablename__ = "activity_feed"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(50), nullable=False)  # ActivityType enum value
    # "metadata" is reserved on declarative classes
    activity_metadata = Column("metadata", JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_activity_feed_user_created", "user_id", "created_at"),
        Index("idx_activity_feed_type", "activity_type"),
    )
