from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReportCategory(str, Enum):
    HARASSMENT = "harassment"
    SPAM = "spam"
    INAPPROPRIATE_CONTENT = "inappropriate_content"
    IMPERSONATION = "impersonation"
    OTHER = "other"


class ReportStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ReportResolution(str, Enum):
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ReportCreate(BaseModel):
    reported_id: UUID
    category: ReportCategory
    description: str | None = Field(None, max_length=2000)
    conversation_id: UUID | None = None


class ReportUpdate(BaseModel):
    status: ReportResolution
    admin_notes: str | None = Field(None, max_length=2000)


class ReportResponse(BaseModel):
    id: UUID
    reporter_id: UUID
    reported_id: UUID
    category: ReportCategory
    description: str | None = None
    conversation_id: UUID | None = None
    snapshot: list[dict] | None = None
    status: ReportStatus
    admin_notes: str | None = None
    resolved_by_admin_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReportListResponse(BaseModel):
    reports: list[ReportResponse]
    total: int
