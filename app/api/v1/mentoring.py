from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.deps import AuthenticatedUser
from app.schemas.mentoring import (
    MentorSearchCard,
    MentorSearchResponse,
    MentorshipDecision,
    MentorshipRequestCreate,
    MentorshipRequestListItem,
    MentorshipRequestListResponse,
    MentorshipRequestResponse,
)
from app.schemas.user import UserSummary
from app.services.providers import Mentorship

router = APIRouter(prefix="/mentoring", tags=["mentoring"])


# ==================================================================
# Mentor listing
# ==================================================================


@router.get("/mentors", response_model=MentorSearchResponse)
async def list_mentors(
    user: AuthenticatedUser,
    engine: Mentorship,
    q: str | None = Query(None, max_length=100),
):
    """Approved mentors, hiding those under a mentor-global block."""
    mentors = await engine.list_mentors(q)
    return MentorSearchResponse(
        mentors=[MentorSearchCard(mentor_id=m.id, name=m.name) for m in mentors],
        total=len(mentors),
    )


# ==================================================================
# Mentorship Requests
# ==================================================================


@router.post(
    "/requests",
    response_model=MentorshipRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_request(
    body: MentorshipRequestCreate,
    user: AuthenticatedUser,
    engine: Mentorship,
):
    return await engine.create_request(
        user, body.mentor_id, body.request_type, body.description
    )


@router.get("/requests/me", response_model=MentorshipRequestListResponse)
async def get_my_requests(user: AuthenticatedUser, engine: Mentorship):
    """Outgoing requests for students, incoming requests for mentors."""
    rows = await engine.list_for_user(user)
    items = []
    for request, other in rows:
        item = MentorshipRequestListItem.model_validate(request)
        if other is not None:
            item.other_user = UserSummary.model_validate(other)
        items.append(item)
    return MentorshipRequestListResponse(requests=items, total=len(items))


@router.get("/requests/{request_id}", response_model=MentorshipRequestResponse)
async def get_request(request_id: UUID, user: AuthenticatedUser, engine: Mentorship):
    return await engine.get_request(request_id, user)


@router.post("/requests/{request_id}/accept", response_model=MentorshipRequestResponse)
async def accept_request(request_id: UUID, user: AuthenticatedUser, engine: Mentorship):
    return await engine.respond(request_id, user, MentorshipDecision.ACCEPTED)


@router.post("/requests/{request_id}/reject", response_model=MentorshipRequestResponse)
async def reject_request(request_id: UUID, user: AuthenticatedUser, engine: Mentorship):
    return await engine.respond(request_id, user, MentorshipDecision.REJECTED)


@router.post("/requests/{request_id}/cancel", response_model=MentorshipRequestResponse)
async def cancel_request(request_id: UUID, user: AuthenticatedUser, engine: Mentorship):
    return await engine.cancel(request_id, user)
