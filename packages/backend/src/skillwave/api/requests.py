"""Help request API routes.

The HTTP interface to the request lifecycle state machine. The service
layer does the validation (transitions, roles); routes translate HTTP to
service calls and domain errors to status codes.

Listing, detail and categories are public; everything that changes
state needs a token.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from skillwave.auth.dependencies import CurrentIdentity, get_current_user
from skillwave.db.engine import get_db
from skillwave.errors import SkillwaveError
from skillwave.schemas.request import (
    CategoryRead,
    EventRead,
    HelpRequestCreate,
    HelpRequestRead,
)
from skillwave.services.outbox import (
    OutboxDispatcher,
    OutboxService,
    get_outbox_dispatcher,
)
from skillwave.services.request_service import RequestService

router = APIRouter(prefix="/requests")


def _request_svc(
    db: AsyncSession = Depends(get_db),
    dispatcher: OutboxDispatcher = Depends(get_outbox_dispatcher),
) -> RequestService:
    return RequestService(db, OutboxService(db, dispatcher))


# ─── Read (public) ──────────────────────────────────────


@router.get("", response_model=list[HelpRequestRead])
async def list_requests(
    status: Optional[str] = Query(None, description="Filter by status"),
    category: Optional[str] = Query(None, description="Filter by category name"),
    search: Optional[str] = Query(None, description="Match title or description"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    svc: RequestService = Depends(_request_svc),
):
    """List requests, newest first."""
    return await svc.list_requests(
        status=status,
        category=category,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/categories/all", response_model=list[CategoryRead])
async def list_categories(svc: RequestService = Depends(_request_svc)):
    return await svc.list_categories()


@router.get("/{request_id}", response_model=HelpRequestRead)
async def get_request(
    request_id: uuid.UUID,
    svc: RequestService = Depends(_request_svc),
):
    req = await svc.get_request(request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")
    return req


# ─── Lifecycle (authenticated) ──────────────────────────


@router.post("", response_model=HelpRequestRead, status_code=201)
async def create_request(
    body: HelpRequestCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_request_svc),
):
    """Create a new request in 'open' status."""
    try:
        return await svc.create_request(
            requester_id=identity.uuid,
            title=body.title,
            description=body.description,
            category_id=body.category_id,
            skills_needed=body.skills_needed,
            urgency=body.urgency,
            estimated_duration=body.estimated_duration,
            location=body.location,
            is_remote=body.is_remote,
            budget_min=body.budget_min,
            budget_max=body.budget_max,
        )
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{request_id}/accept", response_model=HelpRequestRead)
async def accept_request(
    request_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_request_svc),
):
    """The caller becomes the helper: open → in_progress."""
    try:
        return await svc.accept_request(request_id, identity.uuid)
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{request_id}/complete", response_model=HelpRequestRead)
async def complete_request(
    request_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_request_svc),
):
    """The helper finishes the request: in_progress → completed."""
    try:
        return await svc.complete_request(request_id, identity.uuid)
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/{request_id}/events", response_model=list[EventRead])
async def get_request_events(
    request_id: uuid.UUID,
    after: int = Query(0, ge=0, description="Only events with a larger id"),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_request_svc),
):
    """Audit trail of a request (participants only)."""
    try:
        return await svc.request_history(request_id, identity.uuid, after_id=after)
    except SkillwaveError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
