from uuid import UUID

from fastapi import APIRouter, Query

from app.core.deps import AdminUser
from app.schemas.mentoring import (
    ForceStopCreate,
    MentorshipRequestListItem,
    MentorshipRequestListResponse,
    MentorshipRequestResponse,
    MentorshipStatus,
)
from app.services.providers import Mentorship

router = APIRouter(prefix="/admin/mentorship", tags=["admin"])


@router.get("/requests", response_model=MentorshipRequestListResponse)
async def list_requests(
    admin: AdminUser,
    engine: Mentorship,
    status: MentorshipStatus | None = Query(None),
    stopped: bool | None = Query(None),
):
    requests = await engine.list_all(admin, status=status, stopped=stopped)
    return MentorshipRequestListResponse(
        requests=[MentorshipRequestListItem.model_validate(r) for r in requests],
        total=len(requests),
    )


@router.post("/requests/{request_id}/force-stop", response_model=MentorshipRequestResponse)
async def force_stop_request(
    request_id: UUID,
    body: ForceStopCreate,
    admin: AdminUser,
    engine: Mentorship,
):
    """Stop a pending request and block the pair's conversation, if any."""
    return await engine.admin_force_stop(
        request_id, admin, body.reason, conversation_reason=body.conversation_reason
    )
