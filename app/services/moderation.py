import logging
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.deps import CurrentUser
from app.core.exceptions import NotFoundError, ValidationError
from app.models.conversation import Conversation, ConversationParticipant, direct_unique_key
from app.models.mentorship import MentorshipBlock
from app.models.user import User
from app.schemas.block import BlockScope
from app.schemas.chat import BlockedSource, ConversationType
from app.schemas.user import UserRole
from app.services.guards import require_admin

log = logging.getLogger(__name__)

# Which block wins when several match the same pair
_SCOPE_PRIORITY = {
    BlockScope.STUDENT_GLOBAL: 0,
    BlockScope.MENTOR_GLOBAL: 1,
    BlockScope.PAIR_BLOCK: 2,
}

_SCOPE_MESSAGES = {
    BlockScope.STUDENT_GLOBAL: "You are currently blocked from sending mentorship requests",
    BlockScope.MENTOR_GLOBAL: "This mentor is currently unavailable",
    BlockScope.PAIR_BLOCK: "You are blocked from requesting mentorship from this mentor",
}


def block_message(block: MentorshipBlock) -> str:
    return _SCOPE_MESSAGES[block.scope]


def _matches_pair(student_id: UUID, alumni_id: UUID):
    return or_(
        and_(
            MentorshipBlock.scope == BlockScope.STUDENT_GLOBAL,
            MentorshipBlock.blocked_student_id == student_id,
        ),
        and_(
            MentorshipBlock.scope == BlockScope.MENTOR_GLOBAL,
            MentorshipBlock.blocked_mentor_id == alumni_id,
        ),
        and_(
            MentorshipBlock.scope == BlockScope.PAIR_BLOCK,
            MentorshipBlock.blocked_student_id == student_id,
            MentorshipBlock.blocked_mentor_id == alumni_id,
        ),
    )


async def find_matching_block(
    session: AsyncSession, student_id: UUID, alumni_id: UUID
) -> MentorshipBlock | None:
    """First active block whose scope matches the (student, alumni) pair."""
    result = await session.execute(
        select(MentorshipBlock).where(
            MentorshipBlock.is_active.is_(True),
            _matches_pair(student_id, alumni_id),
        )
    )
    blocks = list(result.scalars())
    if not blocks:
        return None
    return min(blocks, key=lambda b: (_SCOPE_PRIORITY[b.scope], b.created_at))


def _validate_scope(
    scope: BlockScope, blocked_student_id: UUID | None, blocked_mentor_id: UUID | None
) -> None:
    if scope == BlockScope.STUDENT_GLOBAL:
        if not blocked_student_id or blocked_mentor_id:
            raise ValidationError(
                "student_global requires blocked_student_id and no blocked_mentor_id",
                field="blocked_student_id",
            )
    elif scope == BlockScope.MENTOR_GLOBAL:
        if not blocked_mentor_id or blocked_student_id:
            raise ValidationError(
                "mentor_global requires blocked_mentor_id and no blocked_student_id",
                field="blocked_mentor_id",
            )
    elif scope == BlockScope.PAIR_BLOCK:
        if not blocked_student_id or not blocked_mentor_id:
            raise ValidationError(
                "pair_block requires both blocked_student_id and blocked_mentor_id",
                field="scope",
            )


class ModerationEngine:
    """Owns mentorship block records and the block matching predicate."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def find_matching_block(self, student_id: UUID, alumni_id: UUID) -> MentorshipBlock | None:
        async with self._sessions() as session:
            return await find_matching_block(session, student_id, alumni_id)

    async def is_mentor_globally_blocked(self, alumni_id: UUID) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                select(MentorshipBlock.id)
                .where(
                    MentorshipBlock.is_active.is_(True),
                    MentorshipBlock.scope == BlockScope.MENTOR_GLOBAL,
                    MentorshipBlock.blocked_mentor_id == alumni_id,
                )
                .limit(1)
            )
            return result.first() is not None

    async def globally_blocked_mentor_ids(self) -> set[UUID]:
        async with self._sessions() as session:
            result = await session.execute(
                select(MentorshipBlock.blocked_mentor_id).where(
                    MentorshipBlock.is_active.is_(True),
                    MentorshipBlock.scope == BlockScope.MENTOR_GLOBAL,
                )
            )
            return {row for row in result.scalars() if row is not None}

    async def create_block(
        self,
        admin: CurrentUser,
        scope: BlockScope,
        blocked_student_id: UUID | None = None,
        blocked_mentor_id: UUID | None = None,
        reason: str | None = None,
    ) -> MentorshipBlock:
        """Gate future requests and conversations. Existing ones are untouched."""
        require_admin(admin)
        _validate_scope(scope, blocked_student_id, blocked_mentor_id)

        async with self._sessions() as session, session.begin():
            if blocked_student_id:
                student = await session.get(User, blocked_student_id)
                if student is None or student.role != UserRole.STUDENT:
                    raise NotFoundError("Blocked student", blocked_student_id)
            if blocked_mentor_id:
                mentor = await session.get(User, blocked_mentor_id)
                if mentor is None or mentor.role != UserRole.ALUMNI:
                    raise NotFoundError("Blocked mentor", blocked_mentor_id)

            block = MentorshipBlock(
                scope=scope,
                blocked_student_id=blocked_student_id,
                blocked_mentor_id=blocked_mentor_id,
                reason=(reason or "").strip() or None,
                is_active=True,
                created_by_admin_id=admin.id,
            )
            session.add(block)

        log.info("Block %s created (%s) by admin %s", block.id, scope.value, admin.id)
        return block

    async def toggle_block(
        self,
        block_id: UUID,
        admin: CurrentUser,
        is_active: bool | None = None,
        reason: str | None = None,
    ) -> MentorshipBlock:
        require_admin(admin)
        if is_active is None and reason is None:
            raise ValidationError("No fields to update")

        async with self._sessions() as session, session.begin():
            block = await session.get(MentorshipBlock, block_id)
            if block is None:
                raise NotFoundError("Block", block_id)
            if is_active is not None:
                block.is_active = is_active
            if reason is not None:
                block.reason = reason.strip() or None

        log.info("Block %s set active=%s by admin %s", block_id, block.is_active, admin.id)
        return block

    async def list_blocks(
        self, admin: CurrentUser, active: bool | None = None
    ) -> list[MentorshipBlock]:
        require_admin(admin)
        stmt = select(MentorshipBlock).order_by(MentorshipBlock.created_at.desc())
        if active is not None:
            stmt = stmt.where(MentorshipBlock.is_active.is_(active))
        async with self._sessions() as session:
            return list((await session.execute(stmt)).scalars())

    async def apply_block_to_conversations(
        self, block_id: UUID, admin: CurrentUser
    ) -> list[UUID]:
        """Explicitly latch every existing direct conversation the block matches."""
        require_admin(admin)

        async with self._sessions() as session, session.begin():
            block = await session.get(MentorshipBlock, block_id)
            if block is None:
                raise NotFoundError("Block", block_id)
            if not block.is_active:
                raise ValidationError("Block is not active", field="is_active")

            reason = block.reason or "Mentorship blocked by admin"
            blocked: list[UUID] = []
            for conversation in await self._matching_conversations(session, block):
                if conversation.apply_block(BlockedSource.MENTORSHIP_BLOCK, reason, admin.id):
                    blocked.append(conversation.id)

        log.info(
            "Block %s applied to %d conversation(s) by admin %s",
            block_id,
            len(blocked),
            admin.id,
        )
        return blocked

    @staticmethod
    async def _matching_conversations(
        session: AsyncSession, block: MentorshipBlock
    ) -> list[Conversation]:
        if block.scope == BlockScope.PAIR_BLOCK:
            key = direct_unique_key(block.blocked_student_id, block.blocked_mentor_id)
            result = await session.execute(
                select(Conversation).where(
                    Conversation.type == ConversationType.DIRECT,
                    Conversation.unique_key == key,
                )
            )
            return list(result.scalars())

        if block.scope == BlockScope.STUDENT_GLOBAL:
            subject_id, counterpart_role = block.blocked_student_id, UserRole.ALUMNI
        else:
            subject_id, counterpart_role = block.blocked_mentor_id, UserRole.STUDENT

        subject_conversations = select(ConversationParticipant.conversation_id).where(
            ConversationParticipant.user_id == subject_id
        )
        result = await session.execute(
            select(Conversation)
            .join(
                ConversationParticipant,
                ConversationParticipant.conversation_id == Conversation.id,
            )
            .join(User, User.id == ConversationParticipant.user_id)
            .where(
                Conversation.type == ConversationType.DIRECT,
                Conversation.id.in_(subject_conversations),
                ConversationParticipant.user_id != subject_id,
                User.role == counterpart_role,
            )
            .distinct()
        )
        return list(result.scalars())
