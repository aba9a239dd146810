# backend/community_messaging/models/message_recipient.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, case
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from community_messaging.db.base import Base


class RecipientStatus:
    DELIVERED = "delivered"
    READ = "read"


class MessageRecipient(Base):
    __tablename__ = "message_recipients"
    __table_args__ = (
        UniqueConstraint("message_id", "recipient_id", name="uq_message_recipient"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    message_id: Mapped[int] = mapped_column(ForeignKey("messages.id", ondelete="CASCADE"), index=True, nullable=False)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    # Single stored fact for read state; status is derived from it
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Which broadcast rule produced this row (audit only)
    target_role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    message = relationship("Message", back_populates="recipients")
    recipient = relationship("User")

    @hybrid_property
    def status(self) -> str:
        return RecipientStatus.READ if self.read_at is not None else RecipientStatus.DELIVERED

    @status.inplace.expression
    @classmethod
    def _status_expression(cls):
        return case(
            (cls.read_at.is_not(None), RecipientStatus.READ),
            else_=RecipientStatus.DELIVERED,
        )

    @property
    def is_read(self) -> bool:
        return self.read_at is not None
