# backend/community_messaging/models/user.py
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from community_messaging.db.base import Base


class UserRole:
    GUEST = "guest"
    REGISTERED = "registered"
    BADGE_HOLDER = "badge_holder"
    PAID = "paid"
    MODERATOR = "moderator"
    ADMIN = "admin"

    ALL = (GUEST, REGISTERED, BADGE_HOLDER, PAID, MODERATOR, ADMIN)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(32), default=UserRole.REGISTERED, index=True, nullable=False)
    has_membership_badge: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    sent_messages = relationship(
        "Message",
        back_populates="sender",
        cascade="all,delete",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
