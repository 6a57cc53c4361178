from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    MENTORSHIP_REQUEST = "mentorship_request"
    MENTORSHIP_ACCEPTED = "mentorship_accepted"
    MENTORSHIP_REJECTED = "mentorship_rejected"
    MENTORSHIP_FORCE_STOPPED = "mentorship_force_stopped"
    NEW_MESSAGE = "new_message"
    SYSTEM_ALERT = "system_alert"


class NotificationResponse(BaseModel):
    id: UUID
    type: NotificationType
    recipient_id: UUID
    reference_id: UUID | None = None
    title: str
    message: str
    metadata: dict | None = Field(None, validation_alias="extra")
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    unread_count: int


class PushSubscriptionCreate(BaseModel):
    endpoint: str
    p256dh: str
    auth: str
