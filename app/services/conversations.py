import logging
import uuid
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import settings
from app.core.deps import CurrentUser
from app.core.exceptions import (
    BlockedError,
    ConflictError,
    ConversationConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.notifications import NotificationDispatcher, NotificationIntent
from app.core.realtime import RealtimeHub
from app.core.types import utcnow
from app.models.conversation import (
    Conversation,
    ConversationParticipant,
    Message,
    direct_unique_key,
)
from app.models.mentorship import MentorshipRequest
from app.models.user import User
from app.schemas.chat import (
    BlockedSource,
    ConversationListItem,
    ConversationResponse,
    ConversationType,
)
from app.schemas.mentoring import MentorshipStatus
from app.schemas.notification import NotificationType
from app.schemas.user import UserRole, UserSummary
from app.services.guards import require_approved, require_text
from app.services.moderation import find_matching_block

log = logging.getLogger(__name__)

_TICK = timedelta(microseconds=1)
_ADVANCE_ATTEMPTS = 5


def _preview(content: str, length: int) -> str:
    return content if len(content) <= length else content[:length] + "..."


async def has_accepted_mentorship(session: AsyncSession, user_a: UUID, user_b: UUID) -> bool:
    """Accepted, non-stopped request between the two users in either direction."""
    result = await session.execute(
        select(MentorshipRequest.id)
        .where(
            MentorshipRequest.status == MentorshipStatus.ACCEPTED,
            MentorshipRequest.stopped_by_admin.is_(False),
            or_(
                and_(
                    MentorshipRequest.student_id == user_a,
                    MentorshipRequest.alumni_id == user_b,
                ),
                and_(
                    MentorshipRequest.student_id == user_b,
                    MentorshipRequest.alumni_id == user_a,
                ),
            ),
        )
        .limit(1)
    )
    return result.first() is not None


async def unread_count(
    session: AsyncSession,
    conversation_id: UUID,
    user_id: UUID,
    last_read_at: datetime | None,
) -> int:
    stmt = select(func.count(Message.id)).where(
        Message.conversation_id == conversation_id,
        Message.sender_id != user_id,
    )
    if last_read_at is not None:
        stmt = stmt.where(Message.created_at > last_read_at)
    return (await session.execute(stmt)).scalar_one()


async def recent_messages_snapshot(
    session: AsyncSession, conversation_id: UUID, limit: int = 20
) -> list[dict]:
    """Last ``limit`` messages of a conversation, oldest first."""
    result = await session.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    messages = list(result.scalars())
    messages.reverse()
    return [m.to_payload() for m in messages]


async def _participant(
    session: AsyncSession, conversation_id: UUID, user_id: UUID
) -> ConversationParticipant | None:
    result = await session.execute(
        select(ConversationParticipant).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def _require_participant(
    session: AsyncSession, conversation_id: UUID, user_id: UUID
) -> tuple[Conversation, ConversationParticipant]:
    conversation = await session.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    participant = await _participant(session, conversation_id, user_id)
    if participant is None:
        raise ForbiddenError("You are not a participant in this conversation")
    return conversation, participant


def _ensure_not_blocked(conversation: Conversation) -> None:
    if conversation.is_blocked:
        raise BlockedError(
            "This conversation has been blocked",
            reason=conversation.blocked_reason,
            blocked_source=conversation.blocked_source.value
            if conversation.blocked_source
            else None,
        )


async def _advance_last_message_at(session: AsyncSession, conversation: Conversation) -> datetime:
    """Claim the next message timestamp for ``conversation``.

    The new ``last_message_at`` is only written if nobody moved it since it
    was read; otherwise the row is reloaded and the claim retried. Timestamps
    therefore strictly increase per conversation across concurrent senders.
    """
    for _ in range(_ADVANCE_ATTEMPTS):
        seen = conversation.last_message_at
        created_at = max(utcnow(), seen + _TICK)
        result = await session.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id, Conversation.last_message_at == seen)
            .values(last_message_at=created_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            set_committed_value(conversation, "last_message_at", created_at)
            return created_at
        await session.refresh(conversation)
        _ensure_not_blocked(conversation)
    raise ConflictError("Conversation is busy, please retry", code="CONVERSATION_BUSY")


def _view(
    conversation: Conversation, last_read_at: datetime | None, created: bool
) -> ConversationResponse:
    view = ConversationResponse.model_validate(conversation)
    return view.model_copy(update={"last_read_at": last_read_at, "created": created})


class ConversationService:
    """Direct conversations, messages and their blocking state."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        notifier: NotificationDispatcher,
        hub: RealtimeHub,
    ):
        self._sessions = sessions
        self._notifier = notifier
        self._hub = hub

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def get_or_create_direct(
        self, initiator: CurrentUser, participant_id: UUID
    ) -> ConversationResponse:
        if initiator.id == participant_id:
            raise ValidationError("Cannot start a conversation with yourself", field="user_id")
        require_approved(initiator)

        unique_key = direct_unique_key(initiator.id, participant_id)

        async with self._sessions() as session:
            other = await session.get(User, participant_id)
            if other is None:
                raise NotFoundError("User", participant_id)
            if not other.is_approved:
                raise ForbiddenError("This user is not available for messaging")

            existing = await self._find_direct(session, unique_key)
            if existing is not None:
                participant = await _participant(session, existing.id, initiator.id)
                return _view(existing, participant.last_read_at if participant else None, False)

            await self._check_can_create(session, initiator, other)

        now = utcnow()
        conversation_id = uuid.uuid4()
        try:
            async with self._sessions() as session, session.begin():
                conversation = Conversation(
                    id=conversation_id,
                    type=ConversationType.DIRECT,
                    unique_key=unique_key,
                    created_at=now,
                    last_message_at=now,
                    is_blocked=False,
                )
                session.add(conversation)
                await session.flush()
                session.add_all(
                    [
                        ConversationParticipant(
                            conversation_id=conversation_id, user_id=initiator.id, joined_at=now
                        ),
                        ConversationParticipant(
                            conversation_id=conversation_id, user_id=participant_id, joined_at=now
                        ),
                    ]
                )
        except IntegrityError:
            # Another caller created the pair's conversation first
            log.info("Direct conversation %s already created, returning existing", unique_key)
            async with self._sessions() as session:
                winner = await self._find_direct(session, unique_key)
                if winner is None:
                    raise ConversationConflictError(unique_key)
                participant = await _participant(session, winner.id, initiator.id)
                return _view(winner, participant.last_read_at if participant else None, False)

        log.info("Created direct conversation %s (%s)", conversation_id, unique_key)
        return _view(conversation, None, True)

    @staticmethod
    async def _find_direct(session: AsyncSession, unique_key: str) -> Conversation | None:
        result = await session.execute(
            select(Conversation).where(
                Conversation.type == ConversationType.DIRECT,
                Conversation.unique_key == unique_key,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _check_can_create(
        session: AsyncSession, initiator: CurrentUser, other: User
    ) -> None:
        roles = {initiator.role, other.role}
        if roles != {UserRole.STUDENT, UserRole.ALUMNI}:
            raise ForbiddenError("Mentorship connection required")

        if initiator.role == UserRole.STUDENT:
            student_id, alumni_id = initiator.id, other.id
        else:
            student_id, alumni_id = other.id, initiator.id

        block = await find_matching_block(session, student_id, alumni_id)
        if block is not None:
            raise BlockedError(
                "Messaging is blocked between these users",
                reason=block.reason,
                blocked_source=BlockedSource.MENTORSHIP_BLOCK.value,
                scope=block.scope.value,
            )

        if not await has_accepted_mentorship(session, student_id, alumni_id):
            raise ForbiddenError("Mentorship connection required")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self, conversation_id: UUID, sender: CurrentUser, content: str
    ) -> Message:
        text = require_text(content, "content", "Message content is required")
        if len(text) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message cannot exceed {settings.MESSAGE_MAX_LENGTH} characters",
                field="content",
            )

        async with self._sessions() as session, session.begin():
            conversation, participant = await _require_participant(
                session, conversation_id, sender.id
            )
            _ensure_not_blocked(conversation)

            created_at = await _advance_last_message_at(session, conversation)
            message = Message(
                conversation_id=conversation_id,
                sender_id=sender.id,
                content=text,
                is_system_message=False,
                created_at=created_at,
            )
            session.add(message)
            participant.last_read_at = created_at

            result = await session.execute(
                select(ConversationParticipant.user_id).where(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.user_id != sender.id,
                )
            )
            recipients = list(result.scalars())
            sender_row = await session.get(User, sender.id)
            await session.flush()

        sender_name = sender_row.name if sender_row else "Someone"
        payload = message.to_payload()
        payload["sender_name"] = sender_name

        await self._notifier.dispatch(
            *(
                NotificationIntent(
                    recipient_id=recipient_id,
                    type=NotificationType.NEW_MESSAGE,
                    title=f"New message from {sender_name}",
                    message=_preview(text, settings.NOTIFICATION_PREVIEW_LENGTH),
                    reference_id=conversation_id,
                    metadata={
                        "conversation_id": str(conversation_id),
                        "sender_id": str(sender.id),
                    },
                    actor_id=sender.id,
                )
                for recipient_id in recipients
            )
        )
        await self._hub.publish_message_created(conversation_id, payload)
        return message

    async def list_messages(
        self, conversation_id: UUID, user: CurrentUser, limit: int = 50, offset: int = 0
    ) -> tuple[list[Message], bool]:
        """Ordered history page; reading it marks the conversation read."""
        async with self._sessions() as session, session.begin():
            _, participant = await _require_participant(session, conversation_id, user.id)
            result = await session.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.asc(), Message.id.asc())
                .offset(offset)
                .limit(limit + 1)
            )
            messages = list(result.scalars())
            participant.last_read_at = utcnow()

        has_more = len(messages) > limit
        return messages[:limit], has_more

    async def mark_read(self, conversation_id: UUID, user: CurrentUser) -> datetime:
        async with self._sessions() as session, session.begin():
            _, participant = await _require_participant(session, conversation_id, user.id)
            participant.last_read_at = utcnow()
        return participant.last_read_at

    async def unread_count(self, conversation_id: UUID, user: CurrentUser) -> int:
        async with self._sessions() as session:
            _, participant = await _require_participant(session, conversation_id, user.id)
            return await unread_count(session, conversation_id, user.id, participant.last_read_at)

    async def recent_messages_snapshot(self, conversation_id: UUID, limit: int = 20) -> list[dict]:
        async with self._sessions() as session:
            if await session.get(Conversation, conversation_id) is None:
                raise NotFoundError("Conversation", conversation_id)
            return await recent_messages_snapshot(session, conversation_id, limit)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_for_user(self, user: CurrentUser) -> list[ConversationListItem]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Conversation, ConversationParticipant.last_read_at)
                .join(
                    ConversationParticipant,
                    ConversationParticipant.conversation_id == Conversation.id,
                )
                .where(ConversationParticipant.user_id == user.id)
                .order_by(Conversation.last_message_at.desc())
            )
            rows = result.all()

            items = []
            for conversation, last_read_at in rows:
                others = await session.execute(
                    select(User)
                    .join(ConversationParticipant, ConversationParticipant.user_id == User.id)
                    .where(
                        ConversationParticipant.conversation_id == conversation.id,
                        User.id != user.id,
                    )
                )
                last = await session.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation.id)
                    .order_by(Message.created_at.desc(), Message.id.desc())
                    .limit(1)
                )
                last_message = last.scalar_one_or_none()
                preview = ""
                if last_message is not None:
                    preview = last_message.content
                    if last_message.sender_id == user.id:
                        preview = f"You: {preview}"
                    preview = _preview(preview, settings.CONVERSATION_PREVIEW_LENGTH)

                items.append(
                    ConversationListItem(
                        id=conversation.id,
                        type=conversation.type,
                        last_message_at=conversation.last_message_at,
                        last_message=preview,
                        unread_count=await unread_count(
                            session, conversation.id, user.id, last_read_at
                        ),
                        is_blocked=conversation.is_blocked,
                        blocked_reason=conversation.blocked_reason,
                        blocked_source=conversation.blocked_source,
                        participants=[UserSummary.model_validate(u) for u in others.scalars()],
                    )
                )
        return items

    # ------------------------------------------------------------------
    # Blocking
    # ------------------------------------------------------------------

    async def block_conversation(
        self,
        conversation_id: UUID,
        source: BlockedSource,
        reason: str | None,
        admin: CurrentUser | None = None,
    ) -> Conversation:
        if source == BlockedSource.ADMIN_MANUAL and (admin is None or not admin.is_admin):
            raise ForbiddenError("Admin access required")
        reason = require_text(reason, "reason", "A block reason is required")

        async with self._sessions() as session, session.begin():
            conversation = await session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFoundError("Conversation", conversation_id)
            changed = conversation.apply_block(source, reason, admin.id if admin else None)

        if changed:
            log.info("Conversation %s blocked (%s)", conversation_id, source.value)
        return conversation

    @staticmethod
    async def block_in_session(
        session: AsyncSession,
        unique_key: str,
        source: BlockedSource,
        reason: str,
        admin_id: UUID | None = None,
    ) -> Conversation | None:
        """Block the direct conversation for ``unique_key`` inside the caller's transaction."""
        result = await session.execute(
            select(Conversation).where(
                Conversation.type == ConversationType.DIRECT,
                Conversation.unique_key == unique_key,
            )
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            return None
        if conversation.apply_block(source, reason, admin_id):
            log.info("Conversation %s blocked (%s)", conversation.id, source.value)
        return conversation

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def authorize_channel(self, conversation_id: UUID, user: CurrentUser) -> None:
        async with self._sessions() as session:
            await _require_participant(session, conversation_id, user.id)
