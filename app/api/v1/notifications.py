from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.deps import AuthenticatedUser, Session
from app.core.types import utcnow
from app.models.notification import Notification, PushSubscription
from app.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    PushSubscriptionCreate,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


async def _unread_count(session, user_id: UUID) -> int:
    result = await session.execute(
        select(func.count(Notification.id)).where(
            Notification.recipient_id == user_id,
            Notification.is_read.is_(False),
        )
    )
    return result.scalar_one()


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    user: AuthenticatedUser,
    session: Session,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    unread_only: bool = Query(False),
):
    conditions = [Notification.recipient_id == user.id]
    if unread_only:
        conditions.append(Notification.is_read.is_(False))

    total = (
        await session.execute(select(func.count(Notification.id)).where(*conditions))
    ).scalar_one()
    result = await session.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
    )

    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in result.scalars()],
        total=total,
        unread_count=await _unread_count(session, user.id),
    )


@router.get("/unread-count")
async def get_unread_count(user: AuthenticatedUser, session: Session):
    return {"unread_count": await _unread_count(session, user.id)}


@router.patch("/read-all", status_code=status.HTTP_200_OK)
async def mark_all_read(user: AuthenticatedUser, session: Session):
    await session.execute(
        update(Notification)
        .where(Notification.recipient_id == user.id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utcnow())
    )
    return {"message": "All notifications marked as read"}


@router.patch("/{notification_id}/read", status_code=status.HTTP_200_OK)
async def mark_notification_read(
    notification_id: UUID, user: AuthenticatedUser, session: Session
):
    notification = await session.get(Notification, notification_id)
    if notification is None or notification.recipient_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
    return {"message": "Notification marked as read"}


@router.get("/push/vapid-key")
async def get_vapid_public_key(user: AuthenticatedUser):
    return {"vapid_public_key": settings.VAPID_PUBLIC_KEY}


@router.post("/push/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe_to_push(
    subscription: PushSubscriptionCreate, user: AuthenticatedUser, session: Session
):
    result = await session.execute(
        select(PushSubscription).where(PushSubscription.endpoint == subscription.endpoint)
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        # Endpoint moved to another account on this browser
        existing.user_id = user.id
        existing.p256dh = subscription.p256dh
        existing.auth = subscription.auth
    else:
        session.add(
            PushSubscription(
                user_id=user.id,
                endpoint=subscription.endpoint,
                p256dh=subscription.p256dh,
                auth=subscription.auth,
            )
        )
    try:
        await session.flush()
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT)

    return {"message": "Push subscription registered"}


@router.delete("/push/subscribe", status_code=status.HTTP_200_OK)
async def unsubscribe_from_push(
    subscription: PushSubscriptionCreate, user: AuthenticatedUser, session: Session
):
    await session.execute(
        delete(PushSubscription).where(
            PushSubscription.endpoint == subscription.endpoint,
            PushSubscription.user_id == user.id,
        )
    )
    return {"message": "Push subscription removed"}
