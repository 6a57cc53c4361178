from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.deps import AdminUser
from app.schemas.block import (
    AppliedBlockResponse,
    MentorshipBlockCreate,
    MentorshipBlockListResponse,
    MentorshipBlockResponse,
    MentorshipBlockUpdate,
)
from app.services.providers import Moderation

router = APIRouter(prefix="/admin/mentorship/blocks", tags=["admin"])


@router.get("", response_model=MentorshipBlockListResponse)
async def list_blocks(
    admin: AdminUser,
    moderation: Moderation,
    active: bool | None = Query(None),
):
    blocks = await moderation.list_blocks(admin, active)
    return MentorshipBlockListResponse(
        blocks=[MentorshipBlockResponse.model_validate(b) for b in blocks],
        total=len(blocks),
    )


@router.post("", response_model=MentorshipBlockResponse, status_code=status.HTTP_201_CREATED)
async def create_block(body: MentorshipBlockCreate, admin: AdminUser, moderation: Moderation):
    return await moderation.create_block(
        admin,
        body.scope,
        blocked_student_id=body.blocked_student_id,
        blocked_mentor_id=body.blocked_mentor_id,
        reason=body.reason,
    )


@router.patch("/{block_id}", response_model=MentorshipBlockResponse)
async def update_block(
    block_id: UUID,
    body: MentorshipBlockUpdate,
    admin: AdminUser,
    moderation: Moderation,
):
    return await moderation.toggle_block(
        block_id, admin, is_active=body.is_active, reason=body.reason
    )


@router.post("/{block_id}/apply-to-conversations", response_model=AppliedBlockResponse)
async def apply_block_to_conversations(
    block_id: UUID, admin: AdminUser, moderation: Moderation
):
    """Block every existing conversation the block matches."""
    blocked = await moderation.apply_block_to_conversations(block_id, admin)
    return AppliedBlockResponse(block_id=block_id, blocked_conversation_ids=blocked)
