import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.core.types import GUID, UTCDateTime, string_enum, utcnow
from app.schemas.report import ReportCategory, ReportStatus


class Report(Base):
    """Moderation case filed by one user against another."""

    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    reporter_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False)
    reported_id: Mapped[uuid.UUID] = mapped_column(GUID(), ForeignKey("users.id"), nullable=False)
    category: Mapped[ReportCategory] = mapped_column(string_enum(ReportCategory), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True
    )
    # Last messages of the conversation at filing time
    snapshot: Mapped[list | None] = mapped_column(JSON, nullable=True)
    status: Mapped[ReportStatus] = mapped_column(
        string_enum(ReportStatus), nullable=False, default=ReportStatus.OPEN
    )
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by_admin_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("reporter_id <> reported_id", name="ck_reports_not_self"),
    )
