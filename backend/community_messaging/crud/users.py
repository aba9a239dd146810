# backend/community_messaging/crud/users.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from community_messaging.core.security import hash_password
from community_messaging.db.session import unit_of_work
from community_messaging.models.user import User, UserRole


def get_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == email)
    return db.execute(stmt).scalar_one_or_none()


def get_by_username(db: Session, username: str) -> User | None:
    stmt = select(User).where(User.username == username)
    return db.execute(stmt).scalar_one_or_none()


def create_user(
    db: Session,
    username: str,
    email: str,
    password: str,
    role: str = UserRole.REGISTERED,
    has_membership_badge: bool = False,
) -> User:
    if role not in UserRole.ALL:
        raise ValueError(f"Unknown role: {role}")

    u = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        has_membership_badge=has_membership_badge,
    )

    with unit_of_work(db):
        db.add(u)
    db.refresh(u)
    return u
