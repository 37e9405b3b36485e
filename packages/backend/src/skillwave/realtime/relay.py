"""Notification relay — turns actions into delivery envelopes.

An envelope is a plain JSON-able dict:

    {
        "type": "request_status_updated",   # event name sent to clients
        "data": {...},                      # payload
        "room": "<request uuid>" | None,    # every connection in the room
        "user_ids": ["<uuid>", ...] | None, # each user's live connection
        "room_members": "<request uuid>" | None,  # each member's live connection
        "broadcast": False,                 # every registered connection
        "exclude_connection": "<conn id>" | None,
        "exclude_user": "<uuid>" | None,   # every connection of this user
    }

Targets are unioned and each connection receives the frame once.

Delivery is local when Redis is unavailable. With Redis, envelopes are
published on skillwave:gateway and every process (this one included)
delivers them against its own registry via run_listener(). While the
listener is not subscribed (Redis dropped, reconnect pending) dispatch
delivers locally instead of publishing into a channel nobody here reads.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog
from redis.exceptions import RedisError

from skillwave.realtime import pubsub
from skillwave.realtime.presence import Connection, PresenceRegistry

logger = structlog.get_logger()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ─── Envelope builders ──────────────────────────────────


def make_envelope(
    event: str,
    data: dict[str, Any],
    *,
    room: Optional[str] = None,
    user_ids: Optional[Iterable[str]] = None,
    room_members: Optional[str] = None,
    broadcast: bool = False,
    exclude_connection: Optional[str] = None,
    exclude_user: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "type": event,
        "data": data,
        "room": room,
        "user_ids": sorted(set(user_ids)) if user_ids else None,
        "room_members": room_members,
        "broadcast": broadcast,
        "exclude_connection": exclude_connection,
        "exclude_user": exclude_user,
    }


def message_notification(request_id: str, sender_name: str) -> dict[str, Any]:
    """Payload pushed to room members other than a chat message's sender."""
    return {
        "requestId": request_id,
        "message": f"New message from {sender_name}",
        "senderName": sender_name,
        "timestamp": now_iso(),
    }


def status_envelope(
    event: str,
    data: dict[str, Any],
    *,
    request_id: str,
    participant_ids: Iterable[str],
    broadcast: bool = False,
) -> dict[str, Any]:
    """Request lifecycle event for the participants and the request's room.

    broadcast=True reproduces the legacy system-wide delivery where every
    client filters by requestId itself.
    """
    if broadcast:
        return make_envelope(event, data, broadcast=True)
    return make_envelope(
        event, data, room=request_id, user_ids=[p for p in participant_ids if p]
    )


# ─── Relay ──────────────────────────────────────────────


class NotificationRelay:
    """Delivers envelopes to live connections."""

    def __init__(self, registry: PresenceRegistry):
        self.registry = registry
        # True while run_listener holds a live subscription
        self.listening = False
        self._subscribed = False

    def targets(self, envelope: dict[str, Any]) -> list[Connection]:
        """Resolve an envelope to the local connections it reaches."""
        exclude = envelope.get("exclude_connection")
        seen: dict[str, Connection] = {}

        if envelope.get("broadcast"):
            for conn in self.registry.connections():
                seen[conn.id] = conn
        if envelope.get("room"):
            for conn in self.registry.room_connections(envelope["room"]):
                seen[conn.id] = conn
        if envelope.get("user_ids"):
            for conn in self.registry.resolve(envelope["user_ids"]):
                seen[conn.id] = conn
        if envelope.get("room_members"):
            members = self.registry.room_members(envelope["room_members"])
            for conn in self.registry.resolve(members):
                seen[conn.id] = conn

        seen.pop(exclude, None)
        exclude_user = envelope.get("exclude_user")
        return [c for c in seen.values() if c.user_id != exclude_user]

    async def deliver(self, envelope: dict[str, Any]) -> int:
        """Send an envelope to local connections. Returns frames sent.

        A connection that fails to receive (closed socket) is logged and
        skipped; the rest still get the frame.
        """
        sent = 0
        for conn in self.targets(envelope):
            try:
                await conn.send(envelope["type"], envelope["data"])
                sent += 1
            except Exception as e:
                logger.warning(
                    "relay.send_failed",
                    event=envelope["type"],
                    user_id=conn.user_id,
                    connection_id=conn.id,
                    error=str(e),
                )
        return sent

    async def dispatch(self, envelope: dict[str, Any]) -> None:
        """Fan out an envelope: through Redis while subscribed, else locally."""
        if self.listening and pubsub.redis_available():
            try:
                await pubsub.publish_envelope(envelope)
                return
            except Exception as e:
                logger.warning(
                    "relay.publish_failed", event=envelope["type"], error=str(e)
                )
        await self.deliver(envelope)

    async def run_listener(
        self,
        retry_seconds: float = 1.0,
        max_retry_seconds: float = 30.0,
    ) -> None:
        """Deliver envelopes published by any gateway process.

        Runs as a background task for the lifetime of the app. A lost
        Redis connection is retried with exponential backoff; until the
        subscription is back, dispatch() delivers locally.
        """
        delay = retry_seconds
        while True:
            try:
                await self._listen()
                error = "subscription closed"
            except (RedisError, OSError) as e:
                error = str(e)
            if self._subscribed:
                delay = retry_seconds
                self._subscribed = False
            logger.warning("relay.listener_lost", error=error, retry_in=delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_retry_seconds)

    async def _listen(self) -> None:
        ps = pubsub.get_redis().pubsub()
        try:
            await ps.subscribe(pubsub.GATEWAY_CHANNEL)
            self.listening = True
            self._subscribed = True
            logger.info("relay.listening", channel=pubsub.GATEWAY_CHANNEL)
            async for message in ps.listen():
                if message["type"] != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                except (TypeError, json.JSONDecodeError):
                    logger.warning("relay.bad_envelope", data=message["data"])
                    continue
                await self.deliver(envelope)
        finally:
            self.listening = False
            try:
                await ps.unsubscribe(pubsub.GATEWAY_CHANNEL)
                await ps.aclose()
            except (RedisError, OSError) as e:
                logger.debug("relay.unsubscribe_failed", error=str(e))
