"""FastAPI auth dependencies.

These are used as Depends() in route handlers to extract and validate
the current user from the Authorization: Bearer header.

Status codes follow what the web client expects: a missing token is
401, a token that fails verification is 403.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException

from skillwave.auth.jwt import TokenError, verify_token
from skillwave.errors import AuthenticationError


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ):
        self.user_id = user_id
        self.email = email
        self.name = name

    @property
    def uuid(self) -> uuid.UUID:
        return uuid.UUID(self.user_id)

    def as_dict(self) -> dict:
        return {"id": self.user_id, "email": self.email, "name": self.name}


def identity_from_token(token: str) -> CurrentIdentity:
    """Verify a token and build the identity it names.

    Shared by the REST dependency and the gateway handshake.
    Raises AuthenticationError.
    """
    try:
        payload = verify_token(token)
        user_id = str(uuid.UUID(str(payload["sub"])))
    except TokenError as e:
        raise AuthenticationError(str(e))
    except ValueError:
        raise AuthenticationError("Invalid token: malformed subject")
    return CurrentIdentity(
        user_id=user_id,
        email=payload.get("email"),
        name=payload.get("name"),
    )


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no token).

    The "soft" auth dependency for endpoints that work both
    authenticated and unauthenticated.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None

    try:
        return identity_from_token(authorization[7:])
    except AuthenticationError as e:
        raise HTTPException(status_code=403, detail=e.message)


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no token)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
