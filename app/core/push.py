import asyncio
import json
import logging
from uuid import UUID

from pywebpush import WebPushException, webpush
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.notification import PushSubscription

log = logging.getLogger(__name__)


def push_enabled() -> bool:
    return bool(settings.VAPID_PRIVATE_KEY and settings.VAPID_PUBLIC_KEY)


async def send_push_to_user(
    sessions: async_sessionmaker[AsyncSession], user_id: UUID, payload: dict
) -> None:
    """Send a Web Push notification to all of a user's subscriptions.

    Silently skips if VAPID keys are not configured.
    Removes stale subscriptions (expired/unsubscribed endpoints).
    """
    if not push_enabled():
        return

    async with sessions() as session:
        result = await session.execute(
            select(PushSubscription).where(PushSubscription.user_id == user_id)
        )
        subscriptions = list(result.scalars())

    stale: list[UUID] = []
    for sub in subscriptions:
        try:
            await asyncio.to_thread(
                webpush,
                subscription_info={
                    "endpoint": sub.endpoint,
                    "keys": {"p256dh": sub.p256dh, "auth": sub.auth},
                },
                data=json.dumps(payload),
                vapid_private_key=settings.VAPID_PRIVATE_KEY,
                vapid_claims={"sub": settings.VAPID_SUBJECT},
            )
        except WebPushException as e:
            if e.response is not None and e.response.status_code in (404, 410):
                stale.append(sub.id)
            else:
                log.warning("Web push to %s failed: %s", user_id, e)

    if stale:
        async with sessions() as session, session.begin():
            await session.execute(delete(PushSubscription).where(PushSubscription.id.in_(stale)))
        log.info("Removed %d stale push subscriptions for %s", len(stale), user_id)
