"""Message API routes — chat history, send, read state, attachments.

Only the requester and the assigned helper of a request may use its
chat. The gateway is the primary send path; POST /messages exists for
clients without a live socket and pushes into the room the same way.
"""

import uuid

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from skillwave.auth.dependencies import CurrentIdentity, get_current_user
from skillwave.db.engine import get_db
from skillwave.errors import SkillwaveError
from skillwave.schemas.common import StatusMessage
from skillwave.schemas.message import MessageCreate, MessageRead, UnreadCount, UploadResult
from skillwave.services.message_service import MessageService
from skillwave.services.outbox import (
    OutboxDispatcher,
    OutboxService,
    get_outbox_dispatcher,
)
from skillwave.services.upload_service import (
    UploadStore,
    check_file_type,
    file_type_for,
    get_upload_store,
)

router = APIRouter(prefix="/messages")


def _msg_svc(
    db: AsyncSession = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
) -> MessageService:
    return MessageService(db, OutboxService(db, dispatcher))


@router.get("/request/{request_id}", response_model=list[MessageRead])
async def list_messages(
    request_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_msg_svc),
):
    """Chat history for a request, oldest first."""
    try:
        messages = await svc.list_messages(request_id, identity.uuid)
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return [MessageRead.from_message(m) for m in messages]


@router.post("", response_model=MessageRead, status_code=201)
async def send_message(
    body: MessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_msg_svc),
):
    try:
        msg = await svc.send_message(
            request_id=body.request_id,
            sender_id=identity.uuid,
            content=body.content,
            message_type=body.message_type,
            file_name=body.file_name,
            file_url=body.file_url,
            file_size=body.file_size,
            notify=True,
        )
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return MessageRead.from_message(msg)


# ─── Read state ─────────────────────────────────────────


@router.put("/request/{request_id}/read", response_model=StatusMessage)
async def mark_request_read(
    request_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_msg_svc),
):
    try:
        await svc.mark_request_read(request_id, identity.uuid)
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return StatusMessage(message="Messages marked as read")


@router.put("/read-all", response_model=StatusMessage)
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_msg_svc),
):
    await svc.mark_all_read(identity.uuid)
    return StatusMessage(message="All messages marked as read")


@router.get("/unread/count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_msg_svc),
):
    return UnreadCount(count=await svc.unread_count(identity.uuid))


# ─── Attachments ────────────────────────────────────────


@router.post("/upload", response_model=UploadResult)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    request_id: uuid.UUID = Form(..., alias="requestId"),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_msg_svc),
    store: UploadStore = Depends(get_upload_store),
):
    """Store a chat attachment; the client then sends it as a message.

    Type and size are checked first, then access. Nothing is written
    for a refused caller.
    """
    try:
        ext = check_file_type(file.filename, file.content_type)
        content = await file.read(store.max_bytes + 1)
        store.check_size(len(content))
        await svc.require_participant(request_id, identity.uuid)
        name = store.save(content, ext)
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return UploadResult(
        file_url=f"{request.base_url}uploads/{name}",
        file_name=file.filename,
        file_size=len(content),
        file_type=file_type_for(ext),
    )
