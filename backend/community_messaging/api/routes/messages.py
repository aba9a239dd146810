# backend/community_messaging/api/routes/messages.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.orm import Session

from community_messaging.core.errors import PermissionDenied
from community_messaging.core.security import get_current_user
from community_messaging.crud import attachments as attachments_crud
from community_messaging.crud import messages as messages_crud
from community_messaging.crud import recipients as recipients_crud
from community_messaging.crud import threads as threads_crud
from community_messaging.crud import unread as unread_crud
from community_messaging.crud.attachments import UploadedFile
from community_messaging.db.session import get_db
from community_messaging.models.message import Message
from community_messaging.models.user import User
from community_messaging.schemas.message import (
    AttachmentOut,
    CountResponse,
    InboxThreadOut,
    MessageDetail,
    MessageOut,
    MessageSendResponse,
    ReadStatusResponse,
    RecipientOut,
    StatusResponse,
    ThreadResponse,
    UnreadCountResponse,
    UnreadDiagnosticsResponse,
)
from community_messaging.security.rate_limiter import enforce_send_limit
from community_messaging.storage.blob_store import BlobStore, get_blob_store


router = APIRouter(prefix='/messages', tags=['messages'])


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedFile]:
    uploads = []
    for f in files or []:
        uploads.append(UploadedFile(
            filename=f.filename,
            data=await f.read(),
            content_type=f.content_type,
        ))
    return uploads


def _detail(db: Session, msg: Message, viewer: User) -> MessageDetail:
    entry = recipients_crud.get_entry(db, msg.id, viewer.id)
    return MessageDetail(
        **MessageOut.model_validate(msg).model_dump(),
        read=entry is None or entry.is_read,
        attachments=[AttachmentOut.model_validate(a) for a in attachments_crud.attachments_of(db, msg.id)],
    )


def _viewable_message(db: Session, message_id: int, user: User) -> Message:
    msg = messages_crud.get_message(db, message_id)
    if not threads_crud.can_view(db, msg, user):
        raise PermissionDenied('Access denied')
    return msg


def _send_response(result: messages_crud.SendResult) -> MessageSendResponse:
    return MessageSendResponse(
        message=MessageOut.model_validate(result.message),
        recipient_count=len(result.recipients),
        attachments=[AttachmentOut.model_validate(a) for a in result.attachments],
        failed_attachments=result.failed_attachments,
    )


@router.get('', response_model=List[InboxThreadOut])
def list_inbox(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Threads the user sent or received, newest root first."""
    return [
        InboxThreadOut(
            message=MessageOut.model_validate(t.message),
            replies=[MessageOut.model_validate(r) for r in t.replies],
            unread=t.unread,
        )
        for t in threads_crud.build_inbox(db, current_user.id)
    ]


@router.post('', response_model=MessageSendResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    recipient: str = Form(''),
    subject: str = Form(''),
    content: str = Form(''),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Send a message to a user id, a role ("admin", "registered", ...),
    everyone ("all"), or a dynamic segment ("template:<name>").
    Attachments are stored best-effort; failures are listed in the response.
    """
    target = recipients_crud.parse_target(recipient)
    enforce_send_limit(current_user.id)

    result = messages_crud.send_message(
        db,
        sender=current_user,
        target=target,
        subject=subject,
        content=content,
        files=await _read_uploads(attachments),
        blob_store=blob_store,
    )
    return _send_response(result)


@router.get('/unread/count', response_model=UnreadCountResponse)
def unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UnreadCountResponse(count=unread_crud.unread_count_for(db, current_user.id))


@router.get('/unread/diagnostics', response_model=UnreadDiagnosticsResponse)
def unread_diagnostics(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UnreadDiagnosticsResponse.model_validate(unread_crud.unread_diagnostics(db, current_user.id))


@router.get('/unread', response_model=List[MessageOut])
def unread_messages(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return unread_crud.unread_messages_for(db, current_user.id)


@router.put('/read-all', response_model=CountResponse)
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return CountResponse(count=recipients_crud.mark_all_read(db, current_user.id))


@router.post('/admin/purge-orphans', response_model=CountResponse)
def purge_orphans(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not current_user.is_admin:
        raise PermissionDenied('Administrator access required')
    return CountResponse(count=unread_crud.purge_orphan_recipients(db))


@router.get('/attachments/{attachment_id}')
def download_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Attachment bytes, for anyone who can see the owning message."""
    attachment = attachments_crud.get_attachment(db, attachment_id)
    if not threads_crud.can_view(db, attachment.message, current_user):
        raise PermissionDenied('Not authorized to access this attachment')

    data = attachments_crud.read_attachment_bytes(attachment, blob_store)
    return Response(
        content=data,
        media_type=attachment.content_type,
        headers={'Content-Disposition': f'attachment; filename="{attachment.filename}"'},
    )


@router.delete('/attachments/{attachment_id}', response_model=StatusResponse)
def delete_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    attachments_crud.detach(db, attachment_id, current_user, blob_store)
    return StatusResponse(status='ok')


@router.get('/{message_id}', response_model=ThreadResponse)
def get_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Message with replies and attachments. Opening it marks it read for a recipient."""
    msg = _viewable_message(db, message_id, current_user)

    entry = recipients_crud.get_entry(db, msg.id, current_user.id)
    if entry is not None and not entry.is_read:
        recipients_crud.mark_read(db, msg.id, current_user.id)

    return ThreadResponse(
        message=_detail(db, msg, current_user),
        replies=[_detail(db, r, current_user) for r in messages_crud.get_replies_of(db, msg.id)],
    )


@router.get('/{message_id}/thread', response_model=ThreadResponse)
def get_thread(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The whole thread the message belongs to, starting from its root."""
    _viewable_message(db, message_id, current_user)
    thread = threads_crud.build_thread(db, message_id)
    return ThreadResponse(
        message=_detail(db, thread.root, current_user),
        replies=[_detail(db, r, current_user) for r in thread.replies],
    )


@router.get('/{message_id}/replies', response_model=List[MessageDetail])
def get_replies(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    msg = _viewable_message(db, message_id, current_user)
    return [_detail(db, r, current_user) for r in messages_crud.get_replies_of(db, msg.id)]


@router.get('/{message_id}/recipients', response_model=List[RecipientOut])
def get_recipients(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delivery/read state per recipient (sender or admin only)."""
    msg = messages_crud.get_message(db, message_id)
    if msg.sender_id != current_user.id and not current_user.is_admin:
        raise PermissionDenied('Only the sender can see delivery status')
    return recipients_crud.recipients_of(db, msg.id)


@router.post('/{message_id}/reply', response_model=MessageSendResponse, status_code=status.HTTP_201_CREATED)
async def reply_to_message(
    message_id: int,
    content: str = Form(''),
    subject: Optional[str] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    enforce_send_limit(current_user.id)

    result = messages_crud.reply_to_message(
        db,
        replier=current_user,
        parent_id=message_id,
        content=content,
        subject=subject,
        files=await _read_uploads(attachments),
        blob_store=blob_store,
    )
    return _send_response(result)


@router.put('/{message_id}/read', response_model=ReadStatusResponse)
def mark_as_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    entry = recipients_crud.mark_read(db, message_id, current_user.id)
    return ReadStatusResponse(message_id=message_id, status=entry.status, read_at=entry.read_at)


@router.delete('/{message_id}', response_model=StatusResponse)
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    messages_crud.delete_message(db, message_id, current_user, blob_store=blob_store)
    return StatusResponse(status='ok')


@router.post('/{message_id}/attachments', response_model=AttachmentOut, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    message_id: int,
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Attach a file to an existing message (sender only)."""
    data = await file.read() if file is not None else b''
    return attachments_crud.attach(
        db,
        message_id=message_id,
        filename=file.filename if file is not None else None,
        data=data,
        content_type=file.content_type if file is not None else None,
        acting_user=current_user,
        blob_store=blob_store,
    )
