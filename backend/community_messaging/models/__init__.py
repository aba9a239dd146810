# backend/community_messaging/models/__init__.py
from .user import User, UserRole
from .message import Message, MessageType
from .message_recipient import MessageRecipient, RecipientStatus
from .attachment import Attachment

__all__ = [
    "User",
    "UserRole",
    "Message",
    "MessageType",
    "MessageRecipient",
    "RecipientStatus",
    "Attachment",
]
