import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.deps import CurrentUser
from app.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.conversation import ConversationParticipant
from app.models.report import Report
from app.models.user import User
from app.schemas.report import ReportCategory, ReportResolution, ReportStatus
from app.services.conversations import recent_messages_snapshot
from app.services.guards import require_admin

log = logging.getLogger(__name__)


class ReportService:
    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def file_report(
        self,
        reporter: CurrentUser,
        reported_id: UUID,
        category: ReportCategory,
        description: str | None = None,
        conversation_id: UUID | None = None,
    ) -> Report:
        if reporter.id == reported_id:
            raise ValidationError("You cannot report yourself", field="reported_id")

        async with self._sessions() as session, session.begin():
            if await session.get(User, reported_id) is None:
                raise NotFoundError("User", reported_id)

            snapshot = None
            if conversation_id is not None:
                result = await session.execute(
                    select(ConversationParticipant.user_id).where(
                        ConversationParticipant.conversation_id == conversation_id
                    )
                )
                members = set(result.scalars())
                if reporter.id not in members or reported_id not in members:
                    raise ForbiddenError("Both users must be participants in the conversation")
                snapshot = await recent_messages_snapshot(
                    session, conversation_id, settings.REPORT_SNAPSHOT_SIZE
                )

            report = Report(
                reporter_id=reporter.id,
                reported_id=reported_id,
                category=category,
                description=(description or "").strip() or None,
                conversation_id=conversation_id,
                snapshot=snapshot,
                status=ReportStatus.OPEN,
            )
            session.add(report)

        log.info("Report %s filed against %s (%s)", report.id, reported_id, category.value)
        return report

    async def list_reports(
        self, admin: CurrentUser, status: ReportStatus | None = None
    ) -> list[Report]:
        require_admin(admin)
        stmt = select(Report).order_by(Report.created_at.desc())
        if status is not None:
            stmt = stmt.where(Report.status == status)
        async with self._sessions() as session:
            return list((await session.execute(stmt)).scalars())

    async def resolve_report(
        self,
        report_id: UUID,
        admin: CurrentUser,
        status: ReportResolution,
        admin_notes: str | None = None,
    ) -> Report:
        require_admin(admin)
        async with self._sessions() as session, session.begin():
            report = await session.get(Report, report_id)
            if report is None:
                raise NotFoundError("Report", report_id)
            if report.status != ReportStatus.OPEN:
                raise InvalidTransitionError("Report is already closed", report.status.value)
            report.status = ReportStatus(status.value)
            report.admin_notes = (admin_notes or "").strip() or None
            report.resolved_by_admin_id = admin.id

        log.info("Report %s %s by admin %s", report_id, status.value, admin.id)
        return report
