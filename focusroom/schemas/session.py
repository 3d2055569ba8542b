import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from focusroom.services.violation_classifier import ViolationCategory


class SessionCreate(BaseModel):
    duration: int  # minutes; non-positive values are rejected by the engine
    participant_ids: list[uuid.UUID] = Field(default_factory=list, max_length=50)


class JoinRequest(BaseModel):
    room_code: str = Field(min_length=1, max_length=16)


class ParticipantAdd(BaseModel):
    user_id: uuid.UUID


class HostTransition(BaseModel):
    # Version of the snapshot the host acted on; stale versions are rejected
    expected_version: int | None = Field(default=None, ge=1)


class ViolationCreate(BaseModel):
    duration_seconds: int
    type: str = Field(default="left app", min_length=1, max_length=50)
    # Follow a catastrophic violation with an immediate terminate
    auto_terminate: bool = True


class EndRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class TerminateRequest(BaseModel):
    cause: str = Field(min_length=1, max_length=255)


class ViolationResponse(BaseModel):
    user_id: uuid.UUID
    seq: int
    timestamp: datetime
    type: str
    duration_seconds: int
    category: ViolationCategory

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    id: uuid.UUID
    room_code: str
    host_id: uuid.UUID
    participants: list[uuid.UUID]
    status: str
    outcome: str | None
    fail_reason: str | None
    duration: int
    violations: list[ViolationResponse]
    version: int
    created_at: datetime
    start_time: datetime | None
    end_time: datetime | None

    model_config = {"from_attributes": True}


class ViolationRecorded(BaseModel):
    violation: ViolationResponse
    catastrophic: bool
    session: SessionResponse


class RoomCodeLookup(BaseModel):
    session_id: uuid.UUID
