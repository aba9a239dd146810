# backend/community_messaging/crud/threads.py
"""
Thread assembly from the flat message table.

Threads are two levels deep: a root and its replies. Replies always point at
the root (see create_message), so a thread is simply every message whose
in_reply_to is the root's id.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from community_messaging.crud.messages import get_message, get_replies_of
from community_messaging.models.message import Message
from community_messaging.models.message_recipient import MessageRecipient
from community_messaging.models.user import User


@dataclass
class Thread:
    root: Message
    replies: List[Message] = field(default_factory=list)


@dataclass
class InboxThread:
    message: Message
    replies: List[Message] = field(default_factory=list)
    unread: bool = False


def build_thread(db: Session, root_id: int) -> Thread:
    """Root plus replies newest-first. Given a reply, returns its root's thread."""
    root = get_message(db, root_id)
    if root.in_reply_to is not None:
        root = get_message(db, root.in_reply_to)
    return Thread(root=root, replies=get_replies_of(db, root.id))


def _received_ids(user_id: int):
    return select(MessageRecipient.message_id).where(MessageRecipient.recipient_id == user_id)


def build_inbox(db: Session, user_id: int) -> List[InboxThread]:
    """
    Every thread the user sent or received a message in, newest root first.
    Ordering follows the root's created_at, not the latest reply.
    """
    involved = db.execute(
        select(Message.id, Message.in_reply_to).where(
            or_(Message.sender_id == user_id, Message.id.in_(_received_ids(user_id)))
        )
    ).all()
    root_ids = {in_reply_to or message_id for message_id, in_reply_to in involved}
    if not root_ids:
        return []

    roots = db.scalars(
        select(Message)
        .where(Message.id.in_(root_ids), Message.in_reply_to.is_(None))
        .order_by(Message.created_at.desc(), Message.id.desc())
    ).all()

    replies_by_root: Dict[int, List[Message]] = defaultdict(list)
    for reply in db.scalars(
        select(Message)
        .where(Message.in_reply_to.in_(root_ids))
        .order_by(Message.created_at.desc(), Message.id.desc())
    ):
        replies_by_root[reply.in_reply_to].append(reply)

    unread_ids = set(db.scalars(
        select(MessageRecipient.message_id).where(
            MessageRecipient.recipient_id == user_id,
            MessageRecipient.read_at.is_(None),
        )
    ).all())

    inbox = []
    for root in roots:
        replies = replies_by_root.get(root.id, [])
        unread = root.id in unread_ids or any(r.id in unread_ids for r in replies)
        inbox.append(InboxThread(message=root, replies=replies, unread=unread))
    return inbox


def can_view(db: Session, message: Message, user: User) -> bool:
    """Admins, and anyone who sent or received any message in the thread."""
    if user.is_admin:
        return True

    root_id = message.in_reply_to or message.id
    thread_ids = select(Message.id).where(or_(Message.id == root_id, Message.in_reply_to == root_id))

    sent = db.scalar(
        select(func.count()).select_from(Message)
        .where(Message.id.in_(thread_ids), Message.sender_id == user.id)
    )
    if sent:
        return True

    received = db.scalar(
        select(func.count()).select_from(MessageRecipient)
        .where(MessageRecipient.message_id.in_(thread_ids), MessageRecipient.recipient_id == user.id)
    )
    return bool(received)
