# backend/community_messaging/crud/recipients.py
"""
Recipient ledger: who a message was delivered to and whether they read it.

Group targets are resolved to a snapshot of user ids exactly once, at send
time, and that list is what fan_out() writes. Later changes to role
membership never touch existing ledger rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Tuple, Union

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from community_messaging.core.config import settings
from community_messaging.core.errors import NotARecipient, NotFound, PermissionDenied, ValidationError
from community_messaging.db.base import id_in_range
from community_messaging.db.session import unit_of_work
from community_messaging.models.message import Message, MessageType
from community_messaging.models.message_recipient import MessageRecipient
from community_messaging.models.user import User, UserRole

logger = logging.getLogger(__name__)

TEMPLATE_PREFIX = "template:"

# Role-broadcast names accepted as a recipient
ROLE_TARGETS = (
    MessageType.ADMIN,
    MessageType.REGISTERED,
    MessageType.BADGE_HOLDERS,
    UserRole.MODERATOR,
    UserRole.PAID,
    UserRole.GUEST,
)

SEGMENTS = ("badge_holders", "new_paid_users")


@dataclass(frozen=True)
class UserTarget:
    user_id: int


@dataclass(frozen=True)
class RoleTarget:
    role: str


@dataclass(frozen=True)
class BroadcastTarget:
    pass


@dataclass(frozen=True)
class SegmentTarget:
    name: str


Target = Union[UserTarget, RoleTarget, BroadcastTarget, SegmentTarget]


@dataclass(frozen=True)
class ResolvedRecipients:
    """Membership snapshot taken at send time."""
    message_type: str
    target_role: str | None
    user_ids: Tuple[int, ...]


def parse_target(raw: str | int) -> Target:
    """
    Map the wire form of a recipient to a target.

    Accepted: a numeric user id, "all", a role-broadcast name from
    ROLE_TARGETS, or "template:<segment>".
    """
    value = str(raw).strip()
    if not value:
        raise ValidationError("Recipient is required")

    if value.startswith(TEMPLATE_PREFIX):
        name = value[len(TEMPLATE_PREFIX):]
        if name not in SEGMENTS:
            raise ValidationError(f"Unknown template targeting type: {name}")
        return SegmentTarget(name)

    if value == MessageType.ALL:
        return BroadcastTarget()

    if value in ROLE_TARGETS:
        return RoleTarget(value)

    # isdigit() alone also accepts non-ASCII digits such as "²"
    if value.isascii() and value.isdigit() and id_in_range(int(value)):
        return UserTarget(int(value))

    raise ValidationError("Invalid recipient", details={"recipient": value})


def target_for_message_type(message_type: str) -> Target:
    """Rebuild the group target a broadcast message was sent with."""
    if message_type == MessageType.ALL:
        return BroadcastTarget()
    if message_type.startswith(MessageType.TEMPLATE_PREFIX):
        return SegmentTarget(message_type[len(MessageType.TEMPLATE_PREFIX):])
    if message_type in ROLE_TARGETS:
        return RoleTarget(message_type)
    raise ValueError(f"Not a group message type: {message_type}")


def authorize_target(sender: User, target: Target) -> None:
    """Only admins may message arbitrary users or groups; everyone may write to the admins."""
    if sender.is_admin:
        return
    if target == RoleTarget(MessageType.ADMIN):
        return
    raise PermissionDenied("You can only send messages to administrators")


def _role_clause(role: str):
    if role == MessageType.REGISTERED:
        # "registered" broadcasts reach paying members
        return User.role == UserRole.PAID
    if role == MessageType.BADGE_HOLDERS:
        return User.has_membership_badge.is_(True)
    return User.role == role


def _segment_clause(name: str):
    if name == "badge_holders":
        return User.has_membership_badge.is_(True)
    if name == "new_paid_users":
        cutoff = datetime.utcnow() - timedelta(days=settings.new_paid_user_days)
        return and_(User.role == UserRole.PAID, User.created_at >= cutoff)
    raise ValidationError(f"Unknown template targeting type: {name}")


def _member_ids(db: Session, clause, sender_id: int) -> Tuple[int, ...]:
    stmt = select(User.id).where(clause, User.id != sender_id).order_by(User.id)
    return tuple(db.scalars(stmt).all())


def resolve_recipients(db: Session, target: Target, sender_id: int) -> ResolvedRecipients:
    """
    Snapshot the concrete recipients of a target. The sender is never one of them.
    """
    if isinstance(target, UserTarget):
        if target.user_id == sender_id:
            raise ValidationError("You cannot send a message to yourself")
        if not id_in_range(target.user_id) or db.get(User, target.user_id) is None:
            raise ValidationError("Invalid recipient", details={"recipient": target.user_id})
        return ResolvedRecipients(MessageType.DIRECT, None, (target.user_id,))

    if isinstance(target, BroadcastTarget):
        ids = _member_ids(db, User.id.is_not(None), sender_id)
        return ResolvedRecipients(MessageType.ALL, MessageType.ALL, ids)

    if isinstance(target, RoleTarget):
        ids = _member_ids(db, _role_clause(target.role), sender_id)
        return ResolvedRecipients(target.role, target.role, ids)

    if isinstance(target, SegmentTarget):
        message_type = f"{MessageType.TEMPLATE_PREFIX}{target.name}"
        ids = _member_ids(db, _segment_clause(target.name), sender_id)
        return ResolvedRecipients(message_type, message_type, ids)

    raise TypeError(f"Unsupported target: {target!r}")


def fan_out(
    db: Session,
    message_id: int,
    recipient_ids: Iterable[int],
    target_role: str | None = None,
) -> List[MessageRecipient]:
    """
    Create one delivered ledger row per recipient. Pairs that already have a
    row are skipped, so repeating a fan-out never duplicates entries.

    Returns only the rows created by this call. Flushes, does not commit.
    """
    existing = set(db.scalars(
        select(MessageRecipient.recipient_id).where(MessageRecipient.message_id == message_id)
    ).all())

    created = []
    for recipient_id in recipient_ids:
        if recipient_id in existing:
            logger.debug("Recipient %s already on message %s, skipping", recipient_id, message_id)
            continue
        existing.add(recipient_id)

        entry = MessageRecipient(
            message_id=message_id,
            recipient_id=recipient_id,
            target_role=target_role,
        )
        db.add(entry)
        created.append(entry)

    db.flush()
    return created


def get_entry(db: Session, message_id: int, user_id: int) -> MessageRecipient | None:
    stmt = select(MessageRecipient).where(
        MessageRecipient.message_id == message_id,
        MessageRecipient.recipient_id == user_id,
    )
    return db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()


def is_recipient(db: Session, message_id: int, user_id: int) -> bool:
    return get_entry(db, message_id, user_id) is not None


def recipients_of(db: Session, message_id: int) -> List[MessageRecipient]:
    stmt = (
        select(MessageRecipient)
        .where(MessageRecipient.message_id == message_id)
        .order_by(MessageRecipient.recipient_id)
    )
    return list(db.scalars(stmt).all())


def mark_read(db: Session, message_id: int, user_id: int) -> MessageRecipient:
    """
    Record that the user opened the message.

    The update only matches rows whose read_at is still NULL, so concurrent
    or repeated calls are no-ops once the first one lands.
    """
    with unit_of_work(db):
        if not id_in_range(message_id) or db.get(Message, message_id) is None:
            raise NotFound("Message not found")

        if get_entry(db, message_id, user_id) is None:
            raise NotARecipient("You are not a recipient of this message")

        result = db.execute(
            update(MessageRecipient)
            .where(
                MessageRecipient.message_id == message_id,
                MessageRecipient.recipient_id == user_id,
                MessageRecipient.read_at.is_(None),
            )
            .values(read_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )

    if result.rowcount:
        logger.debug("Message %s marked read by user %s", message_id, user_id)

    return get_entry(db, message_id, user_id)


def mark_all_read(db: Session, user_id: int) -> int:
    """Mark every unread delivery of a live message as read. Returns rows changed."""
    with unit_of_work(db):
        result = db.execute(
            update(MessageRecipient)
            .where(
                MessageRecipient.recipient_id == user_id,
                MessageRecipient.read_at.is_(None),
                MessageRecipient.message_id.in_(select(Message.id)),
            )
            .values(read_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
    logger.info("User %s marked %d messages read", user_id, result.rowcount)
    return result.rowcount
