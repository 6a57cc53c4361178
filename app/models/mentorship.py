import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.core.types import GUID, UTCDateTime, string_enum, utcnow
from app.schemas.block import BlockScope
from app.schemas.mentoring import MentorshipRequestType, MentorshipStatus


class MentorshipRequest(Base):
    """A directed student -> alumni request for guidance."""

    __tablename__ = "mentorship_requests"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    alumni_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    request_type: Mapped[MentorshipRequestType] = mapped_column(
        string_enum(MentorshipRequestType),
        nullable=False,
        default=MentorshipRequestType.GENERAL,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[MentorshipStatus] = mapped_column(
        string_enum(MentorshipStatus), nullable=False, default=MentorshipStatus.PENDING
    )

    # Admin oversight
    stopped_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stop_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    stopped_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reviewed_by_admin_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        # At most one pending request per (student, alumni)
        Index(
            "uq_pending_mentorship",
            "student_id",
            "alumni_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_mentorship_requests_alumni", "alumni_id"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == MentorshipStatus.PENDING


class MentorshipBlock(Base):
    """Admin denylist entry. Toggled, never deleted."""

    __tablename__ = "mentorship_blocks"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    scope: Mapped[BlockScope] = mapped_column(string_enum(BlockScope), nullable=False)
    blocked_student_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=True
    )
    blocked_mentor_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by_admin_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_mentorship_blocks_active_scope", "is_active", "scope"),
    )
