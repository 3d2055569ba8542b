import uuid
from datetime import datetime

from pydantic import BaseModel


class UserProfileResponse(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    total_hours: float
    violations: int
    sessions_completed: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserLookupResponse(BaseModel):
    id: uuid.UUID
    username: str

    model_config = {"from_attributes": True}


class ParticipantBreakdown(BaseModel):
    user_id: uuid.UUID
    count: int
    total_seconds: int
    by_category: dict[str, int]


class SessionReport(BaseModel):
    session_id: uuid.UUID
    status: str
    outcome: str | None
    fail_reason: str | None
    duration: int
    elapsed_seconds: int
    total_violations: int
    total_violation_seconds: int
    participants: list[ParticipantBreakdown]
    mvp_user_id: uuid.UUID | None
    credited: bool  # whether this request folded the outcome into the viewer's stats
