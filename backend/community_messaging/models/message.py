# backend/community_messaging/models/message.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from community_messaging.db.base import Base


class MessageType:
    DIRECT = "user"
    ADMIN = "admin"
    ALL = "all"
    REGISTERED = "registered"
    BADGE_HOLDERS = "badge_holders"
    TEMPLATE_PREFIX = "template_"

    @classmethod
    def is_group(cls, message_type: str) -> bool:
        return message_type != cls.DIRECT


class Message(Base):
    __tablename__ = "messages"
    # ids of deleted messages are never handed out again
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)

    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(64), default=MessageType.DIRECT, nullable=False)

    # Always the thread root; replies are never nested deeper than one level
    in_reply_to: Mapped[int | None] = mapped_column(ForeignKey("messages.id"), index=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    sender = relationship("User", back_populates="sent_messages")
    recipients = relationship("MessageRecipient", back_populates="message", cascade="all,delete-orphan")
    attachments = relationship("Attachment", back_populates="message", cascade="all,delete-orphan")

    @property
    def is_reply(self) -> bool:
        return self.in_reply_to is not None
