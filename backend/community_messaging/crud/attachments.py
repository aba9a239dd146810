# backend/community_messaging/crud/attachments.py
"""
Attachment metadata. The bytes themselves live in a BlobStore; rows here only
hold the reference the store handed back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from community_messaging.core.config import settings
from community_messaging.core.errors import (
    MessagingError,
    NotFound,
    PermissionDenied,
    StorageUnavailable,
    ValidationError,
)
from community_messaging.db.base import id_in_range
from community_messaging.db.session import unit_of_work
from community_messaging.models.attachment import Attachment
from community_messaging.models.message import Message
from community_messaging.models.user import User
from community_messaging.security.sanitizer import InputSanitizer
from community_messaging.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    filename: Optional[str]
    data: bytes
    content_type: Optional[str] = None


def validate_upload(filename: Optional[str], data: bytes, content_type: Optional[str]) -> Tuple[str, str]:
    """Return (safe filename, normalized content type) or raise ValidationError."""
    if not filename:
        raise ValidationError("No file provided")
    if not data:
        raise ValidationError("File is empty", details={"filename": filename})
    if len(data) > settings.max_attachment_bytes:
        raise ValidationError(
            f"File too large (max {settings.max_attachment_bytes} bytes)",
            details={"filename": filename},
        )
    try:
        safe_name = InputSanitizer.sanitize_filename(filename)
        safe_type = InputSanitizer.normalize_content_type(content_type)
    except ValueError as e:
        raise ValidationError(str(e), details={"filename": filename}) from e
    return safe_name, safe_type


def discard_blob(blob_store: BlobStore, reference: str) -> None:
    """Best-effort deletion; failures are logged and never raised."""
    try:
        blob_store.delete(reference)
    except (MessagingError, OSError):
        logger.warning("Could not delete stored attachment %s", reference, exc_info=True)


def store_files_best_effort(
    db: Session,
    message: Message,
    files: Iterable[UploadedFile],
    blob_store: Optional[BlobStore],
) -> Tuple[List[Attachment], List[dict]]:
    """
    Store each file and add its metadata row to the current transaction.

    A file that fails validation or storage is skipped and reported; the
    others and the message itself are unaffected.
    """
    stored: List[Attachment] = []
    failed: List[dict] = []

    for upload in files:
        try:
            if blob_store is None:
                raise StorageUnavailable("Attachment storage is not configured")
            name, content_type = validate_upload(upload.filename, upload.data, upload.content_type)
            reference = blob_store.put(upload.data, name, content_type)
        except (ValidationError, StorageUnavailable) as e:
            logger.warning(
                "Skipping attachment %r for message %s: %s", upload.filename, message.id, e.message
            )
            failed.append({"filename": upload.filename, "reason": e.message, "code": e.code})
            continue

        attachment = Attachment(
            message_id=message.id,
            filename=name,
            content_type=content_type,
            stored_reference=reference,
            size_bytes=len(upload.data),
        )
        db.add(attachment)
        stored.append(attachment)

    try:
        db.flush()
    except Exception:
        for attachment in stored:
            discard_blob(blob_store, attachment.stored_reference)
        raise
    return stored, failed


def get_attachment(db: Session, attachment_id: int) -> Attachment:
    attachment = db.get(Attachment, attachment_id) if id_in_range(attachment_id) else None
    if attachment is None:
        raise NotFound("Attachment not found")
    return attachment


def attachments_of(db: Session, message_id: int) -> List[Attachment]:
    stmt = select(Attachment).where(Attachment.message_id == message_id).order_by(Attachment.id)
    return list(db.scalars(stmt).all())


def attach(
    db: Session,
    message_id: int,
    filename: Optional[str],
    data: bytes,
    content_type: Optional[str],
    acting_user: User,
    blob_store: BlobStore,
) -> Attachment:
    """
    Attach a file to an existing message (sender only).

    Raises StorageUnavailable when the blob store fails; the message is left
    exactly as it was.
    """
    message = db.get(Message, message_id) if id_in_range(message_id) else None
    if message is None:
        raise NotFound("Message not found")

    if message.sender_id != acting_user.id:
        raise PermissionDenied("Only the sender can add attachments")

    name, safe_type = validate_upload(filename, data, content_type)
    reference = blob_store.put(data, name, safe_type)

    attachment = Attachment(
        message_id=message.id,
        filename=name,
        content_type=safe_type,
        stored_reference=reference,
        size_bytes=len(data),
    )
    try:
        with unit_of_work(db):
            db.add(attachment)
    except MessagingError:
        discard_blob(blob_store, reference)
        raise

    db.refresh(attachment)
    logger.info("Attachment %s added to message %s", attachment.id, message_id)
    return attachment


def detach(db: Session, attachment_id: int, acting_user: User, blob_store: BlobStore) -> None:
    """Remove an attachment row, then ask the blob store to drop the bytes."""
    attachment = get_attachment(db, attachment_id)
    message = attachment.message

    if message.sender_id != acting_user.id and not acting_user.is_admin:
        raise PermissionDenied("You are not allowed to remove this attachment")

    reference = attachment.stored_reference
    with unit_of_work(db):
        db.delete(attachment)

    discard_blob(blob_store, reference)
    logger.info("Attachment %s removed from message %s", attachment_id, message.id)


def read_attachment_bytes(attachment: Attachment, blob_store: BlobStore) -> bytes:
    return blob_store.get(attachment.stored_reference)
