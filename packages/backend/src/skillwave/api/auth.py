"""Auth API — Google sign-in, profile, token check.

- POST /auth/google → upsert the user from the Google profile → JWT
- GET /auth/profile → current user's full profile
- GET /auth/verify → token is valid, echo the identity it carries

The Google profile is trusted as posted by the client; id-token
verification happens in the browser SDK.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from skillwave.auth.dependencies import CurrentIdentity, get_current_user
from skillwave.auth.jwt import create_access_token
from skillwave.db.engine import get_db
from skillwave.schemas.user import AuthResponse, GoogleAuthRequest, UserProfile
from skillwave.services.user_service import UserService

router = APIRouter(prefix="/auth")


@router.post("/google", response_model=AuthResponse)
async def google_sign_in(body: GoogleAuthRequest, db: AsyncSession = Depends(get_db)):
    """Create or update the user, then issue an access token."""
    user = await UserService(db).upsert_google_user(
        email=body.email,
        name=body.name,
        google_id=body.google_id,
        picture=body.picture,
    )
    token = create_access_token(str(user.id), email=user.email, name=user.name)
    return AuthResponse(token=token, user=UserProfile.model_validate(user))


@router.get("/profile", response_model=UserProfile)
async def get_profile(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await UserService(db).get_user(identity.uuid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/verify")
async def verify(identity: CurrentIdentity = Depends(get_current_user)):
    return {"valid": True, "user": identity.as_dict()}
