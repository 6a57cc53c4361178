import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.core.types import GUID, UTCDateTime, string_enum, utcnow
from app.schemas.chat import BlockedSource, ConversationType


def direct_unique_key(user_a: uuid.UUID, user_b: uuid.UUID) -> str:
    """Order-independent key for the direct conversation between two users."""
    first, second = sorted((str(user_a), str(user_b)))
    return f"{first}:{second}"


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    type: Mapped[ConversationType] = mapped_column(
        string_enum(ConversationType), nullable=False, default=ConversationType.DIRECT
    )
    unique_key: Mapped[str | None] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    last_message_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )

    # One-way latch: once set, no new messages are accepted
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_source: Mapped[BlockedSource | None] = mapped_column(
        string_enum(BlockedSource), nullable=True
    )
    blocked_by_admin_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("users.id"), nullable=True
    )
    blocked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index(
            "uq_direct_conversation",
            "unique_key",
            unique=True,
            postgresql_where=text("type = 'direct'"),
            sqlite_where=text("type = 'direct'"),
        ),
        Index("ix_conversations_last_message_at", "last_message_at"),
    )

    def apply_block(
        self,
        source: BlockedSource,
        reason: str | None,
        admin_id: uuid.UUID | None = None,
    ) -> bool:
        """Latch the conversation closed. Returns False if it already was."""
        if self.is_blocked:
            return False
        self.is_blocked = True
        self.blocked_reason = reason
        self.blocked_source = source
        self.blocked_by_admin_id = admin_id
        self.blocked_at = utcnow()
        return True


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    # NULL until the participant reads for the first time
    last_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("uq_conversation_participant", "conversation_id", "user_id", unique=True),
        Index("ix_conversation_participants_user", "user_id"),
    )


class Message(Base):
    """Immutable once written."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_system_message: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    def to_payload(self) -> dict:
        return {
            "id": str(self.id),
            "conversation_id": str(self.conversation_id),
            "sender_id": str(self.sender_id),
            "content": self.content,
            "is_system_message": self.is_system_message,
            "created_at": self.created_at.isoformat(),
        }
