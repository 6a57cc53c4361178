import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.push import send_push_to_user
from app.models.notification import Notification
from app.schemas.notification import NotificationType

log = logging.getLogger(__name__)

_TITLES = {
    NotificationType.MENTORSHIP_REQUEST: "New Mentorship Request",
    NotificationType.MENTORSHIP_ACCEPTED: "Mentorship Accepted",
    NotificationType.MENTORSHIP_REJECTED: "Mentorship Declined",
    NotificationType.MENTORSHIP_FORCE_STOPPED: "Mentorship Stopped by Admin",
    NotificationType.NEW_MESSAGE: "New Message",
    NotificationType.SYSTEM_ALERT: "System Alert",
}


@dataclass
class NotificationIntent:
    recipient_id: UUID
    type: NotificationType
    message: str
    reference_id: UUID | None = None
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    actor_id: UUID | None = None

    @property
    def resolved_title(self) -> str:
        return self.title or _TITLES.get(self.type, "Notification")


class NotificationDispatcher:
    """Fire-and-forget sink for notification intents.

    Rows are written in their own transaction after the caller's mutation
    has committed; push delivery follows. Failures never reach the caller.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def dispatch(self, *intents: NotificationIntent) -> None:
        deliverable = [
            i for i in intents if not (i.actor_id and i.actor_id == i.recipient_id)
        ]
        if not deliverable:
            return

        try:
            async with self._sessions() as session, session.begin():
                session.add_all(
                    Notification(
                        recipient_id=i.recipient_id,
                        type=i.type,
                        reference_id=i.reference_id,
                        title=i.resolved_title,
                        message=i.message,
                        extra=i.metadata or None,
                        is_read=False,
                    )
                    for i in deliverable
                )
        except Exception:
            log.exception("Failed to store %d notification(s)", len(deliverable))

        for intent in deliverable:
            payload = {
                "type": intent.type.value,
                "title": intent.resolved_title,
                "body": intent.message,
            }
            if intent.reference_id:
                payload["reference_id"] = str(intent.reference_id)
            try:
                await send_push_to_user(self._sessions, intent.recipient_id, payload)
            except Exception:
                log.exception("Push delivery failed for %s", intent.recipient_id)
