from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class AttachmentOut(BaseModel):
    """Attachment metadata (no content)."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    message_id: int
    filename: str
    content_type: str
    size_bytes: int
    created_at: datetime


class FailedAttachment(BaseModel):
    filename: Optional[str] = None
    reason: str
    code: str


class RecipientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    recipient_id: int
    status: str
    read_at: Optional[datetime] = None
    target_role: Optional[str] = None


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: int
    subject: str
    content: str
    message_type: str
    in_reply_to: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class MessageDetail(MessageOut):
    """Message as seen by one viewer, with its attachments."""
    read: bool
    attachments: List[AttachmentOut] = []


class MessageSendResponse(BaseModel):
    message: MessageOut
    recipient_count: int
    attachments: List[AttachmentOut] = []
    failed_attachments: List[FailedAttachment] = []


class ThreadResponse(BaseModel):
    """A message with its replies (newest first)."""
    message: MessageDetail
    replies: List[MessageDetail] = []


class InboxThreadOut(BaseModel):
    message: MessageOut
    replies: List[MessageOut] = []
    unread: bool


class UnreadCountResponse(BaseModel):
    count: int


class UnreadDiagnosticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    raw_unread_count: int
    validated_unread_count: int
    orphaned_count: int
    orphaned_message_ids: List[int] = []


class ReadStatusResponse(BaseModel):
    message_id: int
    status: str
    read_at: Optional[datetime] = None


class CountResponse(BaseModel):
    count: int


class StatusResponse(BaseModel):
    status: str
