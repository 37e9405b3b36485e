"""Pydantic schemas for users and Google sign-in."""

import uuid
from typing import Optional

from pydantic import Field, field_validator

from skillwave.schemas.common import CamelModel


class GoogleAuthRequest(CamelModel):
    """Profile posted by the client after Google sign-in."""
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    name: str = Field(..., min_length=1, max_length=100)
    google_id: str = Field(..., min_length=1)
    picture: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("name", "google_id")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class UserSummary(CamelModel):
    """The slice of a user embedded in requests and messages."""
    id: uuid.UUID
    name: str
    email: str
    picture: Optional[str] = None


class UserProfile(CamelModel):
    id: uuid.UUID
    email: str
    name: str
    picture: Optional[str] = None
    bio: str = ""
    skills: list[str] = Field(default_factory=list)
    rating: float = 0.0
    total_reviews: int = 0


class AuthResponse(CamelModel):
    token: str
    user: UserProfile
