"""Real-time gateway — chat rooms, presence and typing over WebSocket.

One room per help request. Client frames are dispatched by type:

    join_room     {requestId}
    leave_room    {requestId}
    send_message  {requestId, content, messageType?, fileName?, fileSize?, fileUrl?}
    typing        {requestId, userName?, isTyping}

The caller's identity comes from the verified handshake token. A userId
in a frame is accepted for client compatibility and ignored when it
disagrees with that identity.

Failures are reported to the caller alone as an `error` frame; nobody
else receives anything for a failed action.
"""

import asyncio
import uuid
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from skillwave.db.engine import async_session_factory
from skillwave.db.models import HelpRequest, User
from skillwave.errors import SkillwaveError
from skillwave.realtime.presence import Connection, PresenceRegistry
from skillwave.realtime.relay import (
    NotificationRelay,
    make_envelope,
    message_notification,
    now_iso,
)
from skillwave.schemas.message import MessageCreate, MessageRead
from skillwave.services.message_service import MessageService

logger = structlog.get_logger()


class WebSocketConnection:
    """A live socket plus the user it authenticated as.

    Sends are serialised: the handler task and the relay listener task
    may both write to the same socket.
    """

    def __init__(self, websocket, user_id: str):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.websocket = websocket
        self._lock = asyncio.Lock()

    async def send(self, event: str, data: Optional[dict] = None) -> None:
        async with self._lock:
            await self.websocket.send_json({"type": event, "data": data or {}})


class Gateway:
    """Handles client frames against a presence registry."""

    def __init__(
        self,
        registry: PresenceRegistry,
        relay: NotificationRelay,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.registry = registry
        self.relay = relay
        self.session_factory = session_factory or async_session_factory
        self._handlers = {
            "join_room": self.join_room,
            "leave_room": self.leave_room,
            "send_message": self.send_message,
            "typing": self.typing,
        }

    # ─── Connection lifecycle ────────────────────────────

    def connect(self, conn: Connection) -> None:
        superseded = self.registry.connect(conn)
        if superseded is not None:
            logger.info(
                "gateway.connection_superseded",
                user_id=conn.user_id,
                old_connection=superseded.id,
                new_connection=conn.id,
            )
        logger.info("gateway.connected", user_id=conn.user_id, connection_id=conn.id)

    async def disconnect(self, conn: Connection) -> None:
        left = self.registry.disconnect(conn)
        for room_id in left:
            await self.relay.dispatch(
                make_envelope(
                    "user_left_room",
                    {"requestId": room_id, "userId": conn.user_id, "timestamp": now_iso()},
                    room=room_id,
                )
            )
        logger.info(
            "gateway.disconnected",
            user_id=conn.user_id,
            connection_id=conn.id,
            rooms_left=len(left),
        )

    async def handle(self, conn: Connection, frame: dict[str, Any]) -> None:
        """Dispatch one client frame by its type."""
        event = frame.get("type")
        data = frame.get("data") or {}
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("gateway.unknown_event", event=event, user_id=conn.user_id)
            await conn.send("error", {"event": event, "message": "Unknown event"})
            return
        if not isinstance(data, dict):
            await conn.send("error", {"event": event, "message": "Invalid payload"})
            return
        self._check_claimed_user(conn, event, data)
        await handler(conn, data)

    # ─── Rooms ───────────────────────────────────────────

    async def join_room(self, conn: Connection, data: dict) -> None:
        request_id = str(data.get("requestId") or "")
        try:
            async with self.session_factory() as db:
                req = await db.get(HelpRequest, uuid.UUID(request_id))
        except ValueError:
            req = None
        except SQLAlchemyError as e:
            logger.error("gateway.join_failed", request_id=request_id, error=str(e))
            await self._error(conn, "join_room", request_id, "Failed to join room")
            return

        if req is None:
            logger.warning("gateway.join_refused", request_id=request_id,
                           user_id=conn.user_id, reason="not_found")
            await self._error(conn, "join_room", request_id, "Request not found")
            return
        if not req.is_participant(uuid.UUID(conn.user_id)):
            logger.warning("gateway.join_refused", request_id=request_id,
                           user_id=conn.user_id, reason="not_participant")
            await self._error(conn, "join_room", request_id,
                              "Not authorized to join this room")
            return

        self.registry.join(request_id, conn)
        logger.info("gateway.room_joined", request_id=request_id, user_id=conn.user_id)
        await self.relay.dispatch(
            make_envelope(
                "user_joined_room",
                {"requestId": request_id, "userId": conn.user_id, "timestamp": now_iso()},
                room=request_id,
                exclude_connection=conn.id,
            )
        )

    async def leave_room(self, conn: Connection, data: dict) -> None:
        request_id = str(data.get("requestId") or "")
        if request_id not in self.registry.user_rooms(conn.user_id):
            logger.info(
                "gateway.leave_ignored", request_id=request_id, user_id=conn.user_id
            )
            return
        self.registry.leave(request_id, conn)
        logger.info("gateway.room_left", request_id=request_id, user_id=conn.user_id)
        await self.relay.dispatch(
            make_envelope(
                "user_left_room",
                {"requestId": request_id, "userId": conn.user_id, "timestamp": now_iso()},
                room=request_id,
            )
        )

    # ─── Chat ────────────────────────────────────────────

    async def send_message(self, conn: Connection, data: dict) -> None:
        """Persist a message, push it to the room, notify the other members.

        The message frame goes to every connection in the room, the
        sender's included. Every other room member also gets a
        notification on their registered connection, which may be a
        newer socket than the one that joined.
        """
        request_id = str(data.get("requestId") or "")
        try:
            body = MessageCreate.model_validate(
                {k: v for k, v in data.items() if v is not None}
            )
        except PydanticValidationError as e:
            logger.warning(
                "gateway.invalid_message",
                request_id=request_id,
                user_id=conn.user_id,
                errors=e.error_count(),
            )
            await self._error(conn, "send_message", request_id, "Failed to send message")
            return

        try:
            async with self.session_factory() as db:
                sender = await db.get(User, uuid.UUID(conn.user_id))
                if sender is None:
                    logger.warning("gateway.sender_missing", user_id=conn.user_id)
                    return
                msg = await MessageService(db).send_message(
                    request_id=body.request_id,
                    sender_id=sender.id,
                    content=body.content,
                    message_type=body.message_type,
                    file_name=body.file_name,
                    file_url=body.file_url,
                    file_size=body.file_size,
                )
                payload = MessageRead.from_message(msg).to_payload()
                sender_name = sender.name
        except (SkillwaveError, SQLAlchemyError, ValueError) as e:
            logger.error(
                "gateway.send_failed",
                request_id=request_id,
                user_id=conn.user_id,
                error=str(e),
            )
            await self._error(conn, "send_message", request_id, "Failed to send message")
            return

        logger.info("gateway.message_sent", request_id=request_id,
                    user_id=conn.user_id, message_id=payload["id"])
        await self.relay.dispatch(make_envelope("message", payload, room=request_id))
        await self.relay.dispatch(
            make_envelope(
                "notification",
                message_notification(request_id, sender_name),
                room_members=request_id,
                exclude_user=conn.user_id,
            )
        )

    async def typing(self, conn: Connection, data: dict) -> None:
        request_id = str(data.get("requestId") or "")
        await self.relay.dispatch(
            make_envelope(
                "typing",
                {
                    "requestId": request_id,
                    "userId": conn.user_id,
                    "userName": data.get("userName"),
                    "isTyping": bool(data.get("isTyping")),
                    "timestamp": now_iso(),
                },
                room=request_id,
                exclude_connection=conn.id,
            )
        )

    # ─── Internals ───────────────────────────────────────

    @staticmethod
    def _check_claimed_user(conn: Connection, event: str, data: dict) -> None:
        claimed = data.get("userId")
        if claimed and str(claimed) != conn.user_id:
            logger.warning(
                "gateway.user_mismatch",
                event=event,
                claimed=str(claimed),
                user_id=conn.user_id,
            )

    @staticmethod
    async def _error(conn: Connection, event: str, request_id: str, message: str) -> None:
        await conn.send("error", {"event": event, "requestId": request_id, "message": message})


# ─── Process-wide instances ─────────────────────────────

registry = PresenceRegistry()
relay = NotificationRelay(registry)
gateway = Gateway(registry, relay)
