from app.models.user import User
from app.models.mentorship import MentorshipBlock, MentorshipRequest
from app.models.conversation import Conversation, ConversationParticipant, Message
from app.models.notification import Notification, PushSubscription
from app.models.report import Report

__all__ = [
    "User",
    "MentorshipRequest",
    "MentorshipBlock",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "Notification",
    "PushSubscription",
    "Report",
]
