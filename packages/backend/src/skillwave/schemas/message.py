"""Pydantic schemas for chat messages, read state and uploads."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from skillwave.db.models import Message
from skillwave.schemas.common import CamelModel


class MessageCreate(CamelModel):
    request_id: uuid.UUID
    content: str = Field(..., min_length=1)
    message_type: str = Field(default="text", pattern=r"^(text|image|file|system)$")
    file_name: Optional[str] = None
    file_url: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)


class MessageRead(CamelModel):
    """A message as the chat client renders it (sender flattened in)."""
    id: uuid.UUID
    request_id: uuid.UUID
    sender_id: uuid.UUID
    sender_name: str
    sender_picture: Optional[str] = None
    content: str
    message_type: str
    file_name: Optional[str] = None
    file_url: Optional[str] = None
    file_size: Optional[int] = None
    created_at: datetime
    is_read: bool

    @classmethod
    def from_message(cls, message: Message) -> "MessageRead":
        """Build from an ORM row whose sender relationship is loaded."""
        return cls(
            id=message.id,
            request_id=message.request_id,
            sender_id=message.sender_id,
            sender_name=message.sender.name,
            sender_picture=message.sender.picture,
            content=message.content,
            message_type=message.message_type,
            file_name=message.file_name,
            file_url=message.file_url,
            file_size=message.file_size,
            created_at=message.created_at,
            is_read=message.is_read,
        )

    def to_payload(self) -> dict:
        """JSON-ready camelCase dict for real-time frames."""
        return self.model_dump(mode="json", by_alias=True)


class UnreadCount(CamelModel):
    count: int


class UploadResult(CamelModel):
    file_url: str
    file_name: str
    file_size: int
    file_type: str  # "image" or "file"
