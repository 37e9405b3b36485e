"""Help request service — the request lifecycle state machine.

Every transition is:
1. Validated against the current status and the caller's role
2. Applied to the help_requests row
3. Recorded as an immutable event (audit trail)
4. Followed by outbox intents (emails, real-time status events), written
   in the same transaction and delivered after commit

The lifecycle:
  open → in_progress (accept, by anyone but the requester)
  in_progress → completed (complete, by the assigned helper only)
  open → cancelled (modelled, no endpoint)

There is no version column: two concurrent accepts of the same open
request can both pass the status check, and the last write decides the
helper.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from skillwave.config import settings
from skillwave.db.models import Category, Event, HelpRequest, User
from skillwave.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    SelfAcceptError,
    ValidationError,
)
from skillwave.events.store import EventStore, request_stream
from skillwave.events.types import (
    REQUEST_ACCEPTED,
    REQUEST_COMPLETED,
    REQUEST_CREATED,
)
from skillwave.realtime.relay import status_envelope
from skillwave.services import email_service
from skillwave.services.outbox import OutboxService

# ═══════════════════════════════════════════════════════════
# State Machine
# ═══════════════════════════════════════════════════════════

VALID_TRANSITIONS: dict[str, set[str]] = {
    "open": {"in_progress", "cancelled"},
    "in_progress": {"completed"},
    "completed": set(),  # terminal state
    "cancelled": set(),  # terminal state
}

DEFAULT_CATEGORIES = [
    {"name": "Programming", "description": "Software development, coding, debugging", "icon": "code"},
    {"name": "Design", "description": "UI/UX design, graphic design, web design", "icon": "palette"},
    {"name": "Mathematics", "description": "Algebra, calculus, statistics, problem solving", "icon": "calculator"},
    {"name": "Languages", "description": "Language learning, translation, conversation practice", "icon": "globe"},
    {"name": "Writing", "description": "Content writing, editing, proofreading", "icon": "pen"},
    {"name": "Other", "description": "Miscellaneous help requests", "icon": "help"},
]


def _populated():
    return (
        selectinload(HelpRequest.requester),
        selectinload(HelpRequest.helper),
        selectinload(HelpRequest.category),
    )


# ═══════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════


class RequestService:
    """Business logic for help request CRUD and lifecycle."""

    def __init__(self, db: AsyncSession, outbox: Optional[OutboxService] = None):
        self.db = db
        self.events = EventStore(db)
        self.outbox = outbox or OutboxService(db)

    # ─── Create ──────────────────────────────────────────

    async def create_request(
        self,
        *,
        requester_id: uuid.UUID,
        title: str,
        description: str,
        category_id: uuid.UUID,
        skills_needed: Optional[list[str]] = None,
        urgency: str = "medium",
        estimated_duration: Optional[str] = None,
        location: Optional[str] = None,
        is_remote: bool = True,
        budget_min: Optional[float] = None,
        budget_max: Optional[float] = None,
    ) -> HelpRequest:
        """Create a new request in 'open' status with no helper."""
        requester = await self.db.get(User, requester_id)
        if not requester:
            raise NotFoundError("User not found")

        category = await self.db.get(Category, category_id)
        if not category:
            raise ValidationError("Invalid category")

        req = HelpRequest(
            requester_id=requester_id,
            category_id=category_id,
            title=title,
            description=description,
            skills_needed=skills_needed or [],
            urgency=urgency,
            estimated_duration=estimated_duration,
            location=location,
            is_remote=is_remote,
            budget_min=budget_min,
            budget_max=budget_max,
            status="open",
        )
        self.db.add(req)
        await self.db.flush()

        await self.events.append(
            stream_id=request_stream(req.id),
            event_type=REQUEST_CREATED,
            data={
                "title": title,
                "category_id": str(category_id),
                "requester_id": str(requester_id),
                "urgency": urgency,
            },
        )
        await self.outbox.email(
            requester.email,
            **email_service.request_created_email(requester.name, title, description),
        )

        await self.db.commit()
        req = await self.get_request(req.id)
        await self.outbox.flush()
        return req

    # ─── Read ────────────────────────────────────────────

    async def get_request(self, request_id: uuid.UUID) -> Optional[HelpRequest]:
        """Fetch one request with requester, helper and category loaded."""
        result = await self.db.execute(
            select(HelpRequest)
            .where(HelpRequest.id == request_id)
            .options(*_populated())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_requests(
        self,
        *,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[HelpRequest]:
        """List requests, newest first.

        category is a category *name*; an unknown name applies no
        category filter. search matches title or description,
        case-insensitively.
        """
        query = (
            select(HelpRequest)
            .options(*_populated())
            .order_by(HelpRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        if status:
            query = query.where(HelpRequest.status == status)
        if category:
            cat = (
                await self.db.execute(select(Category).where(Category.name == category))
            ).scalars().first()
            if cat:
                query = query.where(HelpRequest.category_id == cat.id)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    HelpRequest.title.ilike(pattern),
                    HelpRequest.description.ilike(pattern),
                )
            )

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_categories(self) -> list[Category]:
        result = await self.db.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    async def seed_categories(self) -> int:
        """Insert any default category that does not exist yet. Returns count added."""
        existing = {c.name for c in await self.list_categories()}
        added = 0
        for cat in DEFAULT_CATEGORIES:
            if cat["name"] not in existing:
                self.db.add(Category(**cat))
                added += 1
        await self.db.commit()
        return added

    # ─── Lifecycle transitions ───────────────────────────

    async def accept_request(
        self,
        request_id: uuid.UUID,
        helper_id: uuid.UUID,
    ) -> HelpRequest:
        """Caller becomes the helper: open → in_progress.

        Raises:
            NotFoundError: request or helper does not exist
            InvalidStateError: request is not open
            SelfAcceptError: caller is the requester
        """
        req = await self._load(request_id)
        self._check_transition(req, "in_progress", "Request is not available")
        if req.requester_id == helper_id:
            raise SelfAcceptError("Cannot accept your own request")

        helper = await self.db.get(User, helper_id)
        if not helper:
            raise NotFoundError("User not found")

        now = datetime.now(timezone.utc)
        req.helper_id = helper_id
        req.status = "in_progress"
        req.accepted_at = now

        await self.events.append(
            stream_id=request_stream(req.id),
            event_type=REQUEST_ACCEPTED,
            data={"helper_id": str(helper_id), "from": "open", "to": "in_progress"},
        )

        requester = req.requester
        to_requester, to_helper = email_service.request_accepted_emails(
            requester.name, helper.name, req.title
        )
        await self.outbox.email(requester.email, **to_requester)
        await self.outbox.email(helper.email, **to_helper)

        common = {
            "requestId": str(req.id),
            "requestTitle": req.title,
            "helperId": str(helper_id),
            "requesterId": str(req.requester_id),
            "helperName": helper.name,
            "requesterName": requester.name,
        }
        await self._enqueue_status("request_accepted", common, req)
        await self._enqueue_status(
            "request_status_updated", {**common, "status": "in_progress"}, req
        )

        await self.db.commit()
        req = await self.get_request(req.id)
        await self.outbox.flush()
        return req

    async def complete_request(
        self,
        request_id: uuid.UUID,
        caller_id: uuid.UUID,
    ) -> HelpRequest:
        """The assigned helper finishes: in_progress → completed.

        Raises:
            NotFoundError: request does not exist
            InvalidStateError: request is not in progress
            ForbiddenError: caller is not the helper
        """
        req = await self._load(request_id)
        self._check_transition(req, "completed", "Request is not in progress")
        if req.helper_id != caller_id:
            raise ForbiddenError("Only the helper can complete this request")

        req.status = "completed"
        req.completed_at = datetime.now(timezone.utc)

        await self.events.append(
            stream_id=request_stream(req.id),
            event_type=REQUEST_COMPLETED,
            data={"completed_by": str(caller_id), "from": "in_progress", "to": "completed"},
        )

        requester, helper = req.requester, req.helper
        to_requester, to_helper = email_service.request_completed_emails(
            requester.name, helper.name, req.title
        )
        await self.outbox.email(requester.email, **to_requester)
        await self.outbox.email(helper.email, **to_helper)

        await self._enqueue_status(
            "request_status_updated",
            {
                "requestId": str(req.id),
                "requestTitle": req.title,
                "status": "completed",
                "helperId": str(req.helper_id),
                "requesterId": str(req.requester_id),
                "completedBy": str(caller_id),
                "completedByName": helper.name,
            },
            req,
        )

        await self.db.commit()
        req = await self.get_request(req.id)
        await self.outbox.flush()
        return req

    # ─── Audit trail ─────────────────────────────────────

    async def request_history(
        self, request_id: uuid.UUID, caller_id: uuid.UUID, after_id: int = 0
    ) -> list[Event]:
        """Lifecycle and read-state events of one request, oldest first.

        Raises:
            NotFoundError: request does not exist
            ForbiddenError: caller is neither requester nor helper
        """
        req = await self._load(request_id)
        if not req.is_participant(caller_id):
            raise ForbiddenError("Not authorized to access this request")
        return await self.events.read_stream(
            request_stream(request_id), after_id=after_id
        )

    # ─── Internals ───────────────────────────────────────

    async def _load(self, request_id: uuid.UUID) -> HelpRequest:
        req = await self.get_request(request_id)
        if not req:
            raise NotFoundError("Request not found")
        return req

    @staticmethod
    def _check_transition(req: HelpRequest, new_status: str, message: str) -> None:
        if new_status not in VALID_TRANSITIONS.get(req.status, set()):
            raise InvalidStateError(message)

    async def _enqueue_status(self, event: str, data: dict, req: HelpRequest) -> None:
        await self.outbox.realtime(
            status_envelope(
                event,
                data,
                request_id=str(req.id),
                participant_ids=[str(req.requester_id), str(req.helper_id)],
                broadcast=settings.broadcast_status_events,
            )
        )
