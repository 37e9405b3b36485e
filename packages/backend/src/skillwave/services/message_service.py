"""Message service — chat history, persistence and read state.

Used by both the REST API and the real-time gateway. Only the requester
and the assigned helper of a request may read or write its messages.
"""

import uuid
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from skillwave.db.models import MESSAGE_TYPES, HelpRequest, Message, User
from skillwave.errors import ForbiddenError, NotFoundError, ValidationError
from skillwave.events.store import (
    EventStore,
    message_stream,
    request_stream,
    user_stream,
)
from skillwave.events.types import MESSAGE_SENT, MESSAGES_READ
from skillwave.realtime.relay import make_envelope
from skillwave.schemas.message import MessageRead
from skillwave.services import email_service
from skillwave.services.outbox import OutboxService


class MessageService:
    def __init__(self, db: AsyncSession, outbox: Optional[OutboxService] = None):
        self.db = db
        self.events = EventStore(db)
        self.outbox = outbox

    async def require_participant(
        self, request_id: uuid.UUID, user_id: uuid.UUID
    ) -> HelpRequest:
        """Load a request and check the caller is its requester or helper.

        Raises:
            NotFoundError: request does not exist
            ForbiddenError: caller is not a participant
        """
        result = await self.db.execute(
            select(HelpRequest)
            .where(HelpRequest.id == request_id)
            .options(
                selectinload(HelpRequest.requester),
                selectinload(HelpRequest.helper),
            )
        )
        req = result.scalars().first()
        if not req:
            raise NotFoundError("Request not found")
        if not req.is_participant(user_id):
            raise ForbiddenError("Not authorized to access this request")
        return req

    async def list_messages(
        self, request_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[Message]:
        """Full history of a request's chat, oldest first."""
        await self.require_participant(request_id, user_id)
        result = await self.db.execute(
            select(Message)
            .where(Message.request_id == request_id)
            .options(selectinload(Message.sender))
            .order_by(Message.created_at, Message.id)
        )
        return list(result.scalars().all())

    async def send_message(
        self,
        *,
        request_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        message_type: str = "text",
        file_name: Optional[str] = None,
        file_url: Optional[str] = None,
        file_size: Optional[int] = None,
        notify: bool = False,
    ) -> Message:
        """Persist a chat message (is_read=False).

        With notify=True (the REST path) the other participant gets an
        email and the message is pushed into the request's room through
        the outbox. The gateway does its own room fan-out and passes
        notify=False.
        """
        if not content:
            raise ValidationError("Message content is required")
        if message_type not in MESSAGE_TYPES:
            raise ValidationError("Invalid message type")
        req = await self.require_participant(request_id, sender_id)
        sender = await self.db.get(User, sender_id)
        if not sender:
            raise NotFoundError("User not found")

        msg = Message(
            request_id=request_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            file_name=file_name,
            file_url=file_url,
            file_size=file_size,
            is_read=False,
        )
        self.db.add(msg)
        await self.db.flush()

        await self.events.append(
            stream_id=message_stream(msg.id),
            event_type=MESSAGE_SENT,
            data={
                "request_id": str(request_id),
                "sender_id": str(sender_id),
                "message_type": message_type,
            },
        )

        if notify and self.outbox is not None:
            recipient = req.helper if sender_id == req.requester_id else req.requester
            if recipient is not None:
                await self.outbox.email(
                    recipient.email,
                    **email_service.new_message_email(
                        recipient.name, sender.name, req.title, content
                    ),
                )
            await self.outbox.realtime(
                make_envelope(
                    "message",
                    MessageRead.from_message(_with_sender(msg, sender)).to_payload(),
                    room=str(request_id),
                )
            )

        await self.db.commit()
        msg = await self._reload(msg.id)
        if notify and self.outbox is not None:
            await self.outbox.flush()
        return msg

    # ─── Read state ──────────────────────────────────────

    async def mark_request_read(
        self, request_id: uuid.UUID, user_id: uuid.UUID
    ) -> int:
        """Mark every message of one request read. Returns rows updated."""
        await self.require_participant(request_id, user_id)
        result = await self.db.execute(
            update(Message)
            .where(Message.request_id == request_id)
            .where(Message.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.events.append(
            stream_id=request_stream(request_id),
            event_type=MESSAGES_READ,
            data={"user_id": str(user_id), "count": result.rowcount},
        )
        await self.db.commit()
        return result.rowcount

    async def mark_all_read(self, user_id: uuid.UUID) -> int:
        """Mark read across every request the user participates in."""
        result = await self.db.execute(
            update(Message)
            .where(Message.request_id.in_(self._participating(user_id)))
            .where(Message.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.events.append(
            stream_id=user_stream(user_id),
            event_type=MESSAGES_READ,
            data={"user_id": str(user_id), "count": result.rowcount},
        )
        await self.db.commit()
        return result.rowcount

    async def unread_count(self, user_id: uuid.UUID) -> int:
        """Unread messages across the requests the user participates in.

        Counts every unread message in those rooms, the caller's own
        included.
        """
        result = await self.db.execute(
            select(func.count(Message.id))
            .where(Message.request_id.in_(self._participating(user_id)))
            .where(Message.is_read.is_(False))
        )
        return result.scalar_one()

    # ─── Internals ───────────────────────────────────────

    @staticmethod
    def _participating(user_id: uuid.UUID):
        return select(HelpRequest.id).where(
            or_(HelpRequest.requester_id == user_id, HelpRequest.helper_id == user_id)
        )

    async def _reload(self, message_id: uuid.UUID) -> Message:
        result = await self.db.execute(
            select(Message)
            .where(Message.id == message_id)
            .options(selectinload(Message.sender))
            .execution_options(populate_existing=True)
        )
        return result.scalars().one()


def _with_sender(msg: Message, sender: User) -> Message:
    msg.sender = sender
    return msg
