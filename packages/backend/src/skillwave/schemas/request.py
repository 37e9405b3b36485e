"""Pydantic schemas for help requests and categories.

- HelpRequestCreate: what you POST to create a request
- HelpRequestRead: what the API returns, with requester/helper/category
  populated
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from skillwave.schemas.common import CamelModel
from skillwave.schemas.user import UserSummary


class CategoryRead(CamelModel):
    id: uuid.UUID
    name: str
    description: str
    icon: str


class HelpRequestCreate(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category_id: uuid.UUID
    skills_needed: list[str] = Field(default_factory=list)
    urgency: str = Field(default="medium", pattern=r"^(low|medium|high)$")
    estimated_duration: Optional[str] = None
    location: Optional[str] = None
    is_remote: bool = True
    budget_min: Optional[float] = Field(None, ge=0)
    budget_max: Optional[float] = Field(None, ge=0)


class HelpRequestRead(CamelModel):
    id: uuid.UUID
    requester_id: uuid.UUID
    requester: UserSummary
    category_id: uuid.UUID
    category: CategoryRead
    title: str
    description: str
    skills_needed: list[str]
    urgency: str
    estimated_duration: Optional[str]
    location: Optional[str]
    is_remote: bool
    budget_min: Optional[float]
    budget_max: Optional[float]
    status: str
    helper_id: Optional[uuid.UUID]
    helper: Optional[UserSummary]
    accepted_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class EventRead(CamelModel):
    """One entry of a request's audit trail."""
    id: int
    type: str
    data: dict
    created_at: datetime
