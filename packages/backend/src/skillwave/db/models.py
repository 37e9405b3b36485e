"""SQLAlchemy ORM models — single source of truth for the database schema.

Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Column types are the portable ones (Uuid, JSON) so
the same models run on PostgreSQL in production and SQLite in tests.

Key concepts:
- UUID primary keys for users, categories, requests, messages
- Python-side timestamps (microsecond precision keeps chat order stable)
- An append-only event log and a side-effect outbox next to the projections
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# Request lifecycle states
REQUEST_STATUSES = ("open", "in_progress", "completed", "cancelled")
URGENCY_LEVELS = ("low", "medium", "high")
MESSAGE_TYPES = ("text", "image", "file", "system")


# ══════════════════════════════════════════════════════════════
# Users + Categories
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A student. Created on first Google sign-in, updated on later ones."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    google_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    picture: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bio: Mapped[str] = mapped_column(Text, nullable=False, default="")
    skills: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class Category(Base):
    """Static lookup — seeded once, read-only in normal operation."""

    __tablename__ = "categories"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="help")


# ══════════════════════════════════════════════════════════════
# Help requests + Messages
# ══════════════════════════════════════════════════════════════


class HelpRequest(Base):
    """A request for help — the central entity of the marketplace.

    Lifecycle:
      open → in_progress → completed
      open → cancelled

    helper_id stays NULL while open and is set by accept before the
    request can be in_progress or completed.
    """

    __tablename__ = "help_requests"
    __table_args__ = (
        Index("idx_help_requests_status", "status"),
        Index("idx_help_requests_requester", "requester_id"),
        Index("idx_help_requests_helper", "helper_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    category_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("categories.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    skills_needed: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list
    )
    urgency: Mapped[str] = mapped_column(
        String(10), nullable=False, default="medium"
    )  # low, medium, high
    estimated_duration: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_remote: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    budget_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    budget_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="open"
    )  # open, in_progress, completed, cancelled
    helper_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    requester: Mapped["User"] = relationship(foreign_keys=[requester_id])
    helper: Mapped[Optional["User"]] = relationship(foreign_keys=[helper_id])
    category: Mapped["Category"] = relationship()

    def is_participant(self, user_id: uuid.UUID) -> bool:
        """True for the requester and the assigned helper."""
        return user_id == self.requester_id or (
            self.helper_id is not None and user_id == self.helper_id
        )


class Message(Base):
    """A chat message inside one request's room.

    content is the text, or the file URL for image/file messages.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_request", "request_id", "created_at"),
        Index("idx_messages_unread", "request_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("help_requests.id"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default="text"
    )  # text, image, file, system
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    file_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    # Relationships
    sender: Mapped["User"] = relationship()


# ══════════════════════════════════════════════════════════════
# Event sourcing + Outbox
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable event log — every lifecycle change is recorded here.

    stream_id examples: "request:<uuid>", "message:<uuid>", "user:<uuid>"
    type examples: "request.created", "request.accepted", "message.sent"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )


class OutboxEntry(Base):
    """A side-effect intent recorded in the same transaction as its cause.

    Kinds:
    - 'email': {"to", "subject", "text"}
    - 'realtime': a relay envelope {"type", "data", "user_ids", "room", ...}

    Statuses: pending → delivered | skipped | failed
    """

    __tablename__ = "outbox"
    __table_args__ = (
        Index("idx_outbox_due", "status", "next_attempt_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
