"""
Pydantic models for API request/response validation.
"""

from datetime import date
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, model_validator


class CompetitionCreateRequest(BaseModel):
    """Request to create a competition."""

    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    scoring_type: str = "ring_close"
    scoring_config: Optional[Dict[str, Any]] = None
    is_public: bool = False
    repeat_option: str = "none"
    invited_user_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class CompetitionUpdateRequest(BaseModel):
    """Partial update of a competition. Only sent fields are applied."""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    scoring_type: Optional[str] = None
    scoring_config: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None
    repeat_option: Optional[str] = None


class HealthSampleRequest(BaseModel):
    """One day of health metrics from the client."""

    date: str
    move_calories: float = 0
    exercise_minutes: float = 0
    stand_hours: float = 0
    step_count: float = 0
    distance_meters: float = 0
    workouts_completed: float = 0


class SyncRequest(BaseModel):
    """Batch of daily samples for one competition."""

    records: List[HealthSampleRequest] = Field(default_factory=list)


class InvitationCreateRequest(BaseModel):
    """Invite users to a competition."""

    invitee_ids: List[str] = Field(..., min_length=1)


class LeaveCompetitionRequest(BaseModel):
    """Leave request. Field names follow the mobile client (camelCase)."""

    model_config = ConfigDict(populate_by_name=True)
    competition_id: Optional[str] = Field(None, alias="competitionId")
    transaction_id: Optional[str] = Field(None, alias="transactionId")


class LeaveCompetitionResponse(BaseModel):
    """Leave result; payment fields are only set when payment is required."""

    model_config = ConfigDict(populate_by_name=True)
    success: bool
    error: Optional[str] = None
    requires_payment: Optional[bool] = Field(None, serialization_alias="requiresPayment")
    amount: Optional[float] = None
    currency: Optional[str] = None
    product_id: Optional[str] = Field(None, serialization_alias="productId")
    retryable: Optional[bool] = None


class LeaderboardEntry(BaseModel):
    """A participant's standing."""

    rank: int
    user_id: str
    total_points: int
    move_calories: int
    exercise_minutes: int
    stand_hours: int
    step_count: int
    move_progress: float
    exercise_progress: float
    stand_progress: float
    last_sync_at: Optional[str] = None


class CompetitionResponse(BaseModel):
    """Competition data."""

    id: str
    creator_id: str
    name: str
    description: Optional[str] = None
    start_date: str
    end_date: str
    type: str
    status: str
    scoring_type: str
    scoring_config: Optional[Dict[str, Any]] = None
    is_public: bool
    repeat_option: str
    created_at: Optional[str] = None
    participant_count: Optional[int] = None
    invitations_sent: Optional[int] = None
    leaderboard: Optional[List[LeaderboardEntry]] = None
