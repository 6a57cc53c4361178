from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.deps import AdminUser, AuthenticatedUser
from app.schemas.report import (
    ReportCreate,
    ReportListResponse,
    ReportResponse,
    ReportStatus,
    ReportUpdate,
)
from app.services.providers import Reports

router = APIRouter(tags=["reports"])


@router.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_report(body: ReportCreate, user: AuthenticatedUser, reports: Reports):
    """
    Report another user. When filed from a conversation, the last messages
    are attached to the report for review.
    """
    return await reports.file_report(
        user,
        body.reported_id,
        body.category,
        description=body.description,
        conversation_id=body.conversation_id,
    )


@router.get("/admin/reports", response_model=ReportListResponse)
async def list_reports(
    admin: AdminUser,
    reports: Reports,
    status: ReportStatus | None = Query(None),
):
    rows = await reports.list_reports(admin, status)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in rows],
        total=len(rows),
    )


@router.patch("/admin/reports/{report_id}", response_model=ReportResponse)
async def resolve_report(
    report_id: UUID, body: ReportUpdate, admin: AdminUser, reports: Reports
):
    return await reports.resolve_report(
        report_id, admin, body.status, admin_notes=body.admin_notes
    )
