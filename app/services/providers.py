from typing import Annotated

from fastapi import Depends

from app.core.deps import Notifier, Sessions, get_realtime_hub
from app.core.realtime import RealtimeHub
from app.services.conversations import ConversationService
from app.services.mentorship import MentorshipEngine
from app.services.moderation import ModerationEngine
from app.services.reports import ReportService


def get_moderation(sessions: Sessions) -> ModerationEngine:
    return ModerationEngine(sessions)


def get_conversations(
    sessions: Sessions,
    notifier: Notifier,
    hub: Annotated[RealtimeHub, Depends(get_realtime_hub)],
) -> ConversationService:
    return ConversationService(sessions, notifier, hub)


def get_mentorship(
    sessions: Sessions,
    notifier: Notifier,
    moderation: Annotated[ModerationEngine, Depends(get_moderation)],
) -> MentorshipEngine:
    return MentorshipEngine(sessions, notifier, moderation)


def get_reports(sessions: Sessions) -> ReportService:
    return ReportService(sessions)


Moderation = Annotated[ModerationEngine, Depends(get_moderation)]
Conversations = Annotated[ConversationService, Depends(get_conversations)]
Mentorship = Annotated[MentorshipEngine, Depends(get_mentorship)]
Reports = Annotated[ReportService, Depends(get_reports)]
