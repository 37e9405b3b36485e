"""Event store — append-only audit trail.

Every state change also writes an immutable event next to the row it
changed, e.g. {type: "request.accepted", data: {"helper_id": ...}}.

Events are grouped in streams, one per entity:

    request:<uuid>   created, accepted, completed, messages read
    message:<uuid>   sent
    user:<uuid>      signed in, read-all

A request's stream is served as its history at
GET /api/requests/{id}/events.
"""

import uuid
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skillwave.db.models import Event

EntityId = Union[uuid.UUID, str]


def request_stream(request_id: EntityId) -> str:
    return f"request:{request_id}"


def message_stream(message_id: EntityId) -> str:
    return f"message:{message_id}"


def user_stream(user_id: EntityId) -> str:
    return f"user:{user_id}"


class EventStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Add an event to the session; it commits with the caller's change."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta=metadata or {},
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def read_stream(
        self,
        stream_id: str,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        """Events of one stream in append order, starting after `after_id`."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id, Event.id > after_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())
