# backend/community_messaging/crud/messages.py
"""
Message repository plus the send/reply/delete units of work built on it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from community_messaging.core.config import settings
from community_messaging.core.errors import (
    HasReplies,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from community_messaging.crud.attachments import UploadedFile, discard_blob, store_files_best_effort
from community_messaging.crud.recipients import (
    ResolvedRecipients,
    SegmentTarget,
    Target,
    authorize_target,
    fan_out,
    is_recipient,
    recipients_of,
    resolve_recipients,
    target_for_message_type,
)
from community_messaging.db.base import id_in_range
from community_messaging.db.session import unit_of_work
from community_messaging.models.attachment import Attachment
from community_messaging.models.message import Message, MessageType
from community_messaging.models.message_recipient import MessageRecipient
from community_messaging.models.user import User
from community_messaging.security.sanitizer import InputSanitizer
from community_messaging.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)

REPLY_PREFIX = "Re: "


@dataclass
class SendResult:
    message: Message
    recipients: List[MessageRecipient]
    attachments: List[Attachment] = field(default_factory=list)
    failed_attachments: List[dict] = field(default_factory=list)


def _clean_fields(subject: Optional[str], content: Optional[str]) -> Tuple[str, str]:
    try:
        subject = InputSanitizer.sanitize_subject(subject or "", max_length=settings.subject_max_length)
    except ValueError as e:
        raise ValidationError(f"Invalid subject: {e}") from e
    try:
        content = InputSanitizer.sanitize_content(content or "", max_length=settings.content_max_length)
    except ValueError as e:
        raise ValidationError(f"Invalid content: {e}") from e

    if not subject:
        raise ValidationError("Subject is required")
    if not content.strip():
        raise ValidationError("Message content is required")
    return subject, content


def reply_subject(root_subject: str) -> str:
    if root_subject.lower().startswith(REPLY_PREFIX.lower().strip()):
        return root_subject
    return f"{REPLY_PREFIX}{root_subject}"[:settings.subject_max_length]


def create_message(
    db: Session,
    sender_id: int,
    subject: str,
    content: str,
    message_type: str = MessageType.DIRECT,
    in_reply_to: Optional[int] = None,
) -> Message:
    """
    Insert a message. A reply to a reply is stored against the thread root.
    Flushes, does not commit.
    """
    subject, content = _clean_fields(subject, content)

    if in_reply_to is not None:
        parent = db.get(Message, in_reply_to) if id_in_range(in_reply_to) else None
        if parent is None:
            raise ValidationError("Parent message does not exist", details={"in_reply_to": in_reply_to})
        in_reply_to = parent.in_reply_to or parent.id

    msg = Message(
        sender_id=sender_id,
        subject=subject,
        content=content,
        message_type=message_type,
        in_reply_to=in_reply_to,
    )
    db.add(msg)
    db.flush()
    return msg


def get_message(db: Session, message_id: int) -> Message:
    msg = db.get(Message, message_id) if id_in_range(message_id) else None
    if msg is None:
        raise NotFound("Message not found")
    return msg


def get_replies_of(db: Session, message_id: int) -> List[Message]:
    """Direct replies, newest first."""
    stmt = (
        select(Message)
        .where(Message.in_reply_to == message_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
    )
    return list(db.scalars(stmt).all())


def count_replies(db: Session, message_id: int) -> int:
    stmt = select(func.count()).select_from(Message).where(Message.in_reply_to == message_id)
    return db.scalar(stmt) or 0


def _record_send(
    db: Session,
    sender: User,
    resolved: ResolvedRecipients,
    subject: str,
    content: str,
    files: Iterable[UploadedFile],
    blob_store: Optional[BlobStore],
    in_reply_to: Optional[int] = None,
) -> SendResult:
    """Message, ledger rows and attachment metadata in one transaction."""
    attachments: List[Attachment] = []
    try:
        with unit_of_work(db):
            msg = create_message(db, sender.id, subject, content, resolved.message_type, in_reply_to)
            rows = fan_out(db, msg.id, resolved.user_ids, resolved.target_role)
            attachments, failed = store_files_best_effort(db, msg, files, blob_store)
    except Exception:
        # bytes already written for a transaction that never landed
        if blob_store is not None:
            for attachment in attachments:
                discard_blob(blob_store, attachment.stored_reference)
        raise

    logger.info(
        "Message %s sent by user %s to %d recipient(s) as %s",
        msg.id, sender.id, len(rows), resolved.message_type,
    )
    return SendResult(message=msg, recipients=rows, attachments=attachments, failed_attachments=failed)


def send_message(
    db: Session,
    sender: User,
    target: Target,
    subject: str,
    content: str,
    files: Iterable[UploadedFile] = (),
    blob_store: Optional[BlobStore] = None,
) -> SendResult:
    authorize_target(sender, target)

    resolved = resolve_recipients(db, target, sender.id)
    if isinstance(target, SegmentTarget) and not resolved.user_ids:
        raise NotFound("No recipients match the template criteria")
    if not resolved.user_ids:
        logger.warning("Message from user %s to %s has no recipients", sender.id, resolved.message_type)

    return _record_send(db, sender, resolved, subject, content, files, blob_store)


def reply_to_message(
    db: Session,
    replier: User,
    parent_id: int,
    content: str,
    subject: Optional[str] = None,
    files: Iterable[UploadedFile] = (),
    blob_store: Optional[BlobStore] = None,
) -> SendResult:
    """
    Reply to a message the replier sent, received, or (admins) can see.

    Whoever did not write the parent answers its sender. The parent's sender
    answers the parent's recipients; for a group message that means a fresh
    snapshot of the same group.
    """
    parent = get_message(db, parent_id)

    is_sender = parent.sender_id == replier.id
    if not is_sender and not is_recipient(db, parent.id, replier.id) and not replier.is_admin:
        raise PermissionDenied("You cannot reply to this message")

    if not is_sender:
        resolved = ResolvedRecipients(MessageType.DIRECT, None, (parent.sender_id,))
    elif MessageType.is_group(parent.message_type):
        target = target_for_message_type(parent.message_type)
        resolved = resolve_recipients(db, target, replier.id)
    else:
        ids = tuple(r.recipient_id for r in recipients_of(db, parent.id) if r.recipient_id != replier.id)
        resolved = ResolvedRecipients(MessageType.DIRECT, None, ids)

    root = parent if parent.in_reply_to is None else get_message(db, parent.in_reply_to)
    if not subject or not subject.strip():
        subject = reply_subject(root.subject)

    return _record_send(db, replier, resolved, subject, content, files, blob_store, in_reply_to=root.id)


def delete_message(
    db: Session,
    message_id: int,
    acting_user: User,
    blob_store: Optional[BlobStore] = None,
) -> None:
    """
    Delete a message that has no replies, with its ledger rows and
    attachments, in one transaction. Stored bytes are removed afterwards on a
    best-effort basis.
    """
    with unit_of_work(db):
        msg = get_message(db, message_id)

        if msg.sender_id != acting_user.id and not acting_user.is_admin:
            raise PermissionDenied("You are not allowed to delete this message")

        replies = count_replies(db, message_id)
        if replies:
            raise HasReplies(
                "Cannot delete this message as it has replies",
                details={"replies": replies},
            )

        references = [a.stored_reference for a in msg.attachments]
        db.delete(msg)

    logger.info("Message %s deleted by user %s", message_id, acting_user.id)

    if blob_store is not None:
        for reference in references:
            discard_blob(blob_store, reference)
