from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.user import UserSummary


class ConversationType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class BlockedSource(str, Enum):
    ADMIN_MANUAL = "admin_manual"
    MENTORSHIP_FORCE_STOP = "mentorship_force_stop"
    MENTORSHIP_BLOCK = "mentorship_block"


class RealtimeEvent(str, Enum):
    MESSAGE_CREATED = "message_created"


# ==========================================
# REQUEST SCHEMAS
# ==========================================


class MessageCreate(BaseModel):
    content: str = Field(..., max_length=2000)


class ConversationBlockCreate(BaseModel):
    reason: str = Field(..., max_length=1000)


# ==========================================
# RESPONSE SCHEMAS
# ==========================================


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    is_system_message: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    id: UUID
    type: ConversationType
    unique_key: str | None = None
    created_at: datetime
    last_message_at: datetime
    is_blocked: bool
    blocked_reason: str | None = None
    blocked_source: BlockedSource | None = None
    blocked_at: datetime | None = None
    last_read_at: datetime | None = None
    created: bool = False

    model_config = ConfigDict(from_attributes=True)


class ConversationListItem(BaseModel):
    id: UUID
    type: ConversationType
    last_message_at: datetime
    last_message: str
    unread_count: int
    is_blocked: bool
    blocked_reason: str | None = None
    blocked_source: BlockedSource | None = None
    participants: list[UserSummary]


class ConversationListResponse(BaseModel):
    conversations: list[ConversationListItem]


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]
    has_more: bool


class MessageSnapshotResponse(BaseModel):
    conversation_id: UUID
    messages: list[dict]
