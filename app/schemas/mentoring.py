from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.user import UserSummary


class MentorshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class MentorshipDecision(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MentorshipRequestType(str, Enum):
    GENERAL = "general"
    CAREER = "career"
    RESUME_REVIEW = "resume_review"
    INTERVIEW_PREP = "interview_prep"
    HIGHER_STUDIES = "higher_studies"
    PROJECT_GUIDANCE = "project_guidance"
    NETWORKING = "networking"


# ------------------------------------------------------------------
# Mentorship Requests
# ------------------------------------------------------------------


class MentorshipRequestCreate(BaseModel):
    mentor_id: UUID
    request_type: MentorshipRequestType = MentorshipRequestType.GENERAL
    # Minimum length is a policy setting, checked by the engine
    description: str = Field(..., max_length=1000)


class MentorshipRequestResponse(BaseModel):
    id: UUID
    student_id: UUID
    alumni_id: UUID
    request_type: MentorshipRequestType
    description: str
    status: MentorshipStatus
    stopped_by_admin: bool
    stop_reason: str | None = None
    stopped_at: datetime | None = None
    reviewed_by_admin_id: UUID | None = None
    reviewed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MentorshipRequestListItem(MentorshipRequestResponse):
    other_user: UserSummary | None = None


class MentorshipRequestListResponse(BaseModel):
    requests: list[MentorshipRequestListItem]
    total: int


class ForceStopCreate(BaseModel):
    reason: str = Field(..., max_length=1000)
    conversation_reason: str | None = Field(None, max_length=1000)


# ------------------------------------------------------------------
# Mentor listing
# ------------------------------------------------------------------


class MentorSearchCard(BaseModel):
    mentor_id: UUID
    name: str


class MentorSearchResponse(BaseModel):
    mentors: list[MentorSearchCard]
    total: int
