import logging
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.deps import CurrentUser
from app.core.exceptions import (
    BlockedError,
    DuplicatePendingRequestError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.notifications import NotificationDispatcher, NotificationIntent
from app.core.types import utcnow
from app.models.conversation import direct_unique_key
from app.models.mentorship import MentorshipRequest
from app.models.user import User
from app.schemas.chat import BlockedSource
from app.schemas.mentoring import (
    MentorshipDecision,
    MentorshipRequestType,
    MentorshipStatus,
)
from app.schemas.notification import NotificationType
from app.schemas.user import UserRole, UserStatus
from app.services.conversations import ConversationService
from app.services.guards import require_admin, require_approved, require_text
from app.services.moderation import ModerationEngine, block_message, find_matching_block

log = logging.getLogger(__name__)


async def _claim_pending(session: AsyncSession, request_id: UUID, **values) -> bool:
    """Apply ``values`` only while the request is still pending and not stopped."""
    result = await session.execute(
        update(MentorshipRequest)
        .where(
            MentorshipRequest.id == request_id,
            MentorshipRequest.status == MentorshipStatus.PENDING,
            MentorshipRequest.stopped_by_admin.is_(False),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _ensure_open(request: MentorshipRequest, message: str) -> None:
    if request.stopped_by_admin:
        raise ForbiddenError(
            "This request was stopped by an admin",
            details={"stop_reason": request.stop_reason},
        )
    if not request.is_pending:
        raise InvalidTransitionError(message, request.status.value)


class MentorshipEngine:
    """Mentorship request state machine.

    pending -> accepted | rejected  (alumni)
    pending -> cancelled            (student)
    pending -> cancelled + stopped  (admin force-stop)
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        notifier: NotificationDispatcher,
        moderation: ModerationEngine | None = None,
    ):
        self._sessions = sessions
        self._notifier = notifier
        self._moderation = moderation or ModerationEngine(sessions)

    # ------------------------------------------------------------------
    # Student actions
    # ------------------------------------------------------------------

    async def create_request(
        self,
        student: CurrentUser,
        alumni_id: UUID,
        request_type: MentorshipRequestType,
        description: str,
    ) -> MentorshipRequest:
        if student.role != UserRole.STUDENT:
            raise ForbiddenError("Only students can send mentorship requests")
        require_approved(student)
        if student.id == alumni_id:
            raise ValidationError("Cannot send a request to yourself", field="mentor_id")

        description = (description or "").strip()
        if len(description) < settings.MENTORSHIP_MIN_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at least {settings.MENTORSHIP_MIN_DESCRIPTION_LENGTH} characters",
                field="description",
            )
        if len(description) > settings.MENTORSHIP_MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description cannot exceed {settings.MENTORSHIP_MAX_DESCRIPTION_LENGTH} characters",
                field="description",
            )

        try:
            async with self._sessions() as session, session.begin():
                alumni = await session.get(User, alumni_id)
                if (
                    alumni is None
                    or alumni.role != UserRole.ALUMNI
                    or alumni.status != UserStatus.APPROVED
                ):
                    raise NotFoundError("Mentor", alumni_id)

                block = await find_matching_block(session, student.id, alumni_id)
                if block is not None:
                    raise BlockedError(
                        block_message(block),
                        reason=block.reason,
                        blocked_source=BlockedSource.MENTORSHIP_BLOCK.value,
                        scope=block.scope.value,
                    )

                request = MentorshipRequest(
                    student_id=student.id,
                    alumni_id=alumni_id,
                    request_type=request_type,
                    description=description,
                    status=MentorshipStatus.PENDING,
                    stopped_by_admin=False,
                )
                session.add(request)
                student_row = await session.get(User, student.id)
        except IntegrityError:
            raise DuplicatePendingRequestError(student.id, alumni_id)

        log.info("Mentorship request %s created: %s -> %s", request.id, student.id, alumni_id)

        student_name = student_row.name if student_row else "A student"
        await self._notifier.dispatch(
            NotificationIntent(
                recipient_id=alumni_id,
                type=NotificationType.MENTORSHIP_REQUEST,
                message=f"{student_name} sent you a mentorship request",
                reference_id=request.id,
                metadata={"request_type": request_type.value, "student_id": str(student.id)},
                actor_id=student.id,
            )
        )
        return request

    async def cancel(self, request_id: UUID, actor: CurrentUser) -> MentorshipRequest:
        async with self._sessions() as session, session.begin():
            request = await session.get(MentorshipRequest, request_id)
            if request is None:
                raise NotFoundError("Mentorship request", request_id)
            if request.student_id != actor.id:
                raise ForbiddenError("Only the requesting student can cancel this request")
            _ensure_open(request, "Only pending requests can be cancelled")
            claimed = await _claim_pending(session, request_id, status=MentorshipStatus.CANCELLED)
            await session.refresh(request)
            if not claimed:
                _ensure_open(request, "Only pending requests can be cancelled")
                raise InvalidTransitionError(
                    "Only pending requests can be cancelled", request.status.value
                )

        log.info("Mentorship request %s cancelled by student", request_id)
        return request

    # ------------------------------------------------------------------
    # Alumni actions
    # ------------------------------------------------------------------

    async def respond(
        self, request_id: UUID, actor: CurrentUser, decision: MentorshipDecision
    ) -> MentorshipRequest:
        async with self._sessions() as session, session.begin():
            request = await session.get(MentorshipRequest, request_id)
            if request is None:
                raise NotFoundError("Mentorship request", request_id)
            if request.alumni_id != actor.id:
                raise ForbiddenError("Only the requested mentor can respond to this request")
            _ensure_open(request, "Request has already been processed")
            alumni_row = await session.get(User, actor.id)
            claimed = await _claim_pending(
                session, request_id, status=MentorshipStatus(decision.value)
            )
            await session.refresh(request)
            if not claimed:
                _ensure_open(request, "Request has already been processed")
                raise InvalidTransitionError(
                    "Request has already been processed", request.status.value
                )

        log.info("Mentorship request %s %s", request_id, decision.value)

        alumni_name = alumni_row.name if alumni_row else "The mentor"
        if decision == MentorshipDecision.ACCEPTED:
            intent_type = NotificationType.MENTORSHIP_ACCEPTED
            text = f"{alumni_name} accepted your mentorship request"
        else:
            intent_type = NotificationType.MENTORSHIP_REJECTED
            text = f"{alumni_name} declined your mentorship request"
        await self._notifier.dispatch(
            NotificationIntent(
                recipient_id=request.student_id,
                type=intent_type,
                message=text,
                reference_id=request.id,
                actor_id=actor.id,
            )
        )
        return request

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    async def admin_force_stop(
        self,
        request_id: UUID,
        admin: CurrentUser,
        reason: str,
        conversation_reason: str | None = None,
    ) -> MentorshipRequest:
        require_admin(admin)
        reason = require_text(reason, "reason", "A reason is required to stop a mentorship")
        conversation_reason = (conversation_reason or "").strip() or reason

        async with self._sessions() as session, session.begin():
            request = await session.get(MentorshipRequest, request_id)
            if request is None:
                raise NotFoundError("Mentorship request", request_id)
            if request.stopped_by_admin:
                log.info("Mentorship request %s already stopped, nothing to do", request_id)
                return request
            if not request.is_pending:
                raise InvalidTransitionError(
                    "Only pending requests can be stopped", request.status.value
                )

            now = utcnow()
            claimed = await _claim_pending(
                session,
                request_id,
                status=MentorshipStatus.CANCELLED,
                stopped_by_admin=True,
                stop_reason=reason,
                stopped_at=now,
                reviewed_by_admin_id=admin.id,
                reviewed_at=now,
            )
            await session.refresh(request)
            if not claimed:
                if request.stopped_by_admin:
                    log.info("Mentorship request %s already stopped, nothing to do", request_id)
                    return request
                raise InvalidTransitionError(
                    "Only pending requests can be stopped", request.status.value
                )

            conversation = await ConversationService.block_in_session(
                session,
                direct_unique_key(request.student_id, request.alumni_id),
                BlockedSource.MENTORSHIP_FORCE_STOP,
                conversation_reason,
                admin.id,
            )

        log.info(
            "Mentorship request %s force-stopped by admin %s (conversation: %s)",
            request_id,
            admin.id,
            conversation.id if conversation else None,
        )

        metadata = {"reason": reason, "request_id": str(request.id)}
        await self._notifier.dispatch(
            NotificationIntent(
                recipient_id=request.student_id,
                type=NotificationType.MENTORSHIP_FORCE_STOPPED,
                message=f"Your mentorship request was stopped by an admin. Reason: {reason}",
                reference_id=request.id,
                metadata=metadata,
            ),
            NotificationIntent(
                recipient_id=request.alumni_id,
                type=NotificationType.MENTORSHIP_FORCE_STOPPED,
                message=f"A mentorship request to you was stopped by an admin. Reason: {reason}",
                reference_id=request.id,
                metadata=metadata,
            ),
        )
        return request

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_for_user(
        self, user: CurrentUser
    ) -> list[tuple[MentorshipRequest, User | None]]:
        """Requests with the other party: outgoing for students, incoming for alumni."""
        if user.role == UserRole.STUDENT:
            own, other = MentorshipRequest.student_id, MentorshipRequest.alumni_id
        elif user.role == UserRole.ALUMNI:
            own, other = MentorshipRequest.alumni_id, MentorshipRequest.student_id
        else:
            return []

        async with self._sessions() as session:
            result = await session.execute(
                select(MentorshipRequest, User)
                .outerjoin(User, User.id == other)
                .where(own == user.id)
                .order_by(MentorshipRequest.created_at.desc())
            )
            return [(request, other_user) for request, other_user in result.all()]

    async def get_request(self, request_id: UUID, user: CurrentUser) -> MentorshipRequest:
        async with self._sessions() as session:
            request = await session.get(MentorshipRequest, request_id)
        if request is None or not (
            user.is_admin or user.id in (request.student_id, request.alumni_id)
        ):
            raise NotFoundError("Mentorship request", request_id)
        return request

    async def list_all(
        self,
        admin: CurrentUser,
        status: MentorshipStatus | None = None,
        stopped: bool | None = None,
    ) -> list[MentorshipRequest]:
        require_admin(admin)
        stmt = select(MentorshipRequest).order_by(MentorshipRequest.created_at.desc())
        if status is not None:
            stmt = stmt.where(MentorshipRequest.status == status)
        if stopped is not None:
            stmt = stmt.where(MentorshipRequest.stopped_by_admin.is_(stopped))
        async with self._sessions() as session:
            return list((await session.execute(stmt)).scalars())

    async def list_mentors(self, search: str | None = None) -> list[User]:
        """Approved alumni, minus mentors under an active mentor-global block."""
        stmt = (
            select(User)
            .where(User.role == UserRole.ALUMNI, User.status == UserStatus.APPROVED)
            .order_by(User.name)
        )
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

        blocked = await self._moderation.globally_blocked_mentor_ids()
        async with self._sessions() as session:
            mentors = list((await session.execute(stmt)).scalars())
        return [m for m in mentors if m.id not in blocked]
