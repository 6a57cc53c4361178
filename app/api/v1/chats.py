import asyncio
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, status

from app.core.config import settings
from app.core.deps import AdminUser, AuthenticatedUser, WebSocketUser, get_realtime_hub
from app.core.exceptions import PortalError
from app.core.realtime import RealtimeHub, conversation_channel
from app.schemas.chat import (
    BlockedSource,
    ConversationBlockCreate,
    ConversationListResponse,
    ConversationResponse,
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    MessageSnapshotResponse,
)
from app.services.providers import Conversations

log = logging.getLogger(__name__)

router = APIRouter(prefix="/chats", tags=["chats"])

DEFAULT_PAGE_SIZE = 30


@router.post("/direct/{user_id}", response_model=ConversationResponse)
async def get_or_create_direct(
    user_id: UUID, user: AuthenticatedUser, conversations: Conversations
):
    """
    Get the direct conversation with another user, creating it on first use.
    Safe to call repeatedly; both users always get the same conversation.
    """
    return await conversations.get_or_create_direct(user, user_id)


@router.get("", response_model=ConversationListResponse)
async def list_conversations(user: AuthenticatedUser, conversations: Conversations):
    items = await conversations.list_for_user(user)
    return ConversationListResponse(conversations=items)


@router.get("/{conversation_id}/messages", response_model=MessageListResponse)
async def get_messages(
    conversation_id: UUID,
    user: AuthenticatedUser,
    conversations: Conversations,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    messages, has_more = await conversations.list_messages(
        conversation_id, user, limit=limit, offset=offset
    )
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in messages],
        has_more=has_more,
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    msg: MessageCreate,
    user: AuthenticatedUser,
    conversations: Conversations,
):
    return await conversations.send_message(conversation_id, user, msg.content)


@router.patch("/{conversation_id}/read")
async def mark_read(conversation_id: UUID, user: AuthenticatedUser, conversations: Conversations):
    last_read_at = await conversations.mark_read(conversation_id, user)
    return {"message": "Conversation marked as read", "last_read_at": last_read_at}


# ==================================================================
# Admin moderation
# ==================================================================


@router.post("/{conversation_id}/block", response_model=ConversationResponse)
async def block_conversation(
    conversation_id: UUID,
    body: ConversationBlockCreate,
    admin: AdminUser,
    conversations: Conversations,
):
    return await conversations.block_conversation(
        conversation_id, BlockedSource.ADMIN_MANUAL, body.reason, admin=admin
    )


@router.get("/{conversation_id}/snapshot", response_model=MessageSnapshotResponse)
async def get_snapshot(
    conversation_id: UUID,
    admin: AdminUser,
    conversations: Conversations,
    limit: int = Query(settings.REPORT_SNAPSHOT_SIZE, ge=1, le=100),
):
    messages = await conversations.recent_messages_snapshot(conversation_id, limit)
    return MessageSnapshotResponse(conversation_id=conversation_id, messages=messages)


# ==================================================================
# Realtime
# ==================================================================


@router.websocket("/{conversation_id}/ws")
async def conversation_events(
    websocket: WebSocket,
    conversation_id: UUID,
    user: WebSocketUser,
    conversations: Conversations,
    hub: Annotated[RealtimeHub, Depends(get_realtime_hub)],
):
    """
    Stream ``message_created`` events for one conversation.

    Connect: WS /api/v1/chats/{conversation_id}/ws?token=<access token>
    Events are hints to append or refetch; history order comes from /messages.
    """
    if user is None:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return
    try:
        await conversations.authorize_channel(conversation_id, user)
    except PortalError as e:
        await websocket.close(code=4003, reason=e.message)
        return

    channel = conversation_channel(conversation_id)
    queue = hub.subscribe(channel)

    async def forward():
        while True:
            event = await queue.get()
            await websocket.send_json(event)

    async def drain():
        # Client frames are ignored; receiving only detects the disconnect
        while True:
            await websocket.receive_text()

    tasks: list[asyncio.Task] = []
    try:
        await websocket.accept()
        forwarder = asyncio.create_task(forward())
        receiver = asyncio.create_task(drain())
        tasks = [forwarder, receiver]
        done, pending = await asyncio.wait(
            {forwarder, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if forwarder in done:
            log.warning("Event stream for %s failed: %s", channel, forwarder.exception())
        if receiver in done:
            log.debug("User %s left %s: %s", user.id, channel, receiver.exception())
        else:
            try:
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            except RuntimeError as e:
                log.debug("Socket for %s already closed: %s", channel, e)
    finally:
        for task in tasks:
            task.cancel()
        hub.unsubscribe(channel, queue)
