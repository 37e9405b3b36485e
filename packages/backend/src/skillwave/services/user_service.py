"""User service — Google sign-in upsert and profile lookup."""

import uuid
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from skillwave.db.models import User
from skillwave.events.store import EventStore, user_stream
from skillwave.events.types import USER_SIGNED_IN


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    async def upsert_google_user(
        self,
        *,
        email: str,
        name: str,
        google_id: str,
        picture: Optional[str] = None,
    ) -> User:
        """Create the user on first sign-in, refresh name/picture afterwards.

        Matches an existing account by email OR Google id, so an account
        created under one survives a change of the other.
        """
        result = await self.db.execute(
            select(User).where(or_(User.email == email, User.google_id == google_id))
        )
        user = result.scalars().first()
        created = user is None

        if user is None:
            user = User(
                google_id=google_id,
                email=email,
                name=name,
                picture=picture,
                bio="",
                skills=[],
            )
            self.db.add(user)
        else:
            user.name = name
            user.picture = picture
            if not user.google_id:
                user.google_id = google_id
        await self.db.flush()

        await self.events.append(
            stream_id=user_stream(user.id),
            event_type=USER_SIGNED_IN,
            data={"email": email, "created": created},
        )

        await self.db.commit()
        return user

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.db.get(User, user_id)
