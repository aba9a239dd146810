# backend/community_messaging/crud/unread.py
"""
Unread counter: a read-only projection over messages and the recipient
ledger. There is deliberately no stored counter to keep in sync.

A ledger row whose message is gone (an orphan) is never unread, whether or
not purge_orphan_recipients() has removed it yet.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from community_messaging.db.session import unit_of_work
from community_messaging.models.message import Message
from community_messaging.models.message_recipient import MessageRecipient

logger = logging.getLogger(__name__)


def _unread_filter(user_id: int):
    return (
        MessageRecipient.recipient_id == user_id,
        MessageRecipient.read_at.is_(None),
    )


def _orphan_filter():
    return ~MessageRecipient.message_id.in_(select(Message.id))


def unread_count_for(db: Session, user_id: int) -> int:
    stmt = (
        select(func.count(MessageRecipient.id))
        .join(Message, Message.id == MessageRecipient.message_id)
        .where(*_unread_filter(user_id))
    )
    return db.scalar(stmt) or 0


def unread_messages_for(db: Session, user_id: int) -> List[Message]:
    """Messages the user has not opened yet, newest first."""
    stmt = (
        select(Message)
        .join(MessageRecipient, MessageRecipient.message_id == Message.id)
        .where(*_unread_filter(user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
    )
    return list(db.scalars(stmt).all())


@dataclass
class UnreadDiagnostics:
    raw_unread_count: int
    validated_unread_count: int
    orphaned_count: int
    orphaned_message_ids: List[int] = field(default_factory=list)


def unread_diagnostics(db: Session, user_id: int) -> UnreadDiagnostics:
    """
    Compare the ledger-only count with the validated count so discrepancies
    caused by orphaned rows are visible.
    """
    raw = db.scalar(
        select(func.count(MessageRecipient.id)).where(*_unread_filter(user_id))
    ) or 0

    orphan_ids = list(db.scalars(
        select(MessageRecipient.message_id)
        .where(*_unread_filter(user_id), _orphan_filter())
        .order_by(MessageRecipient.message_id)
    ).all())

    return UnreadDiagnostics(
        raw_unread_count=raw,
        validated_unread_count=unread_count_for(db, user_id),
        orphaned_count=len(orphan_ids),
        orphaned_message_ids=orphan_ids,
    )


def purge_orphan_recipients(db: Session) -> int:
    """Physically delete ledger rows that point at deleted messages."""
    with unit_of_work(db):
        result = db.execute(
            delete(MessageRecipient)
            .where(_orphan_filter())
            .execution_options(synchronize_session=False)
        )
    if result.rowcount:
        logger.info("Purged %d orphaned recipient rows", result.rowcount)
    return result.rowcount
