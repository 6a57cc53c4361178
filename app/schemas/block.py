from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class BlockScope(str, Enum):
    STUDENT_GLOBAL = "student_global"
    MENTOR_GLOBAL = "mentor_global"
    PAIR_BLOCK = "pair_block"


class MentorshipBlockCreate(BaseModel):
    scope: BlockScope
    blocked_student_id: UUID | None = None
    blocked_mentor_id: UUID | None = None
    reason: str | None = Field(None, max_length=1000)


class MentorshipBlockUpdate(BaseModel):
    is_active: bool | None = None
    reason: str | None = Field(None, max_length=1000)


class MentorshipBlockResponse(BaseModel):
    id: UUID
    scope: BlockScope
    blocked_student_id: UUID | None = None
    blocked_mentor_id: UUID | None = None
    reason: str | None = None
    is_active: bool
    created_by_admin_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MentorshipBlockListResponse(BaseModel):
    blocks: list[MentorshipBlockResponse]
    total: int


class AppliedBlockResponse(BaseModel):
    block_id: UUID
    blocked_conversation_ids: list[UUID]
