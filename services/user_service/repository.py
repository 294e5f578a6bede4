from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from .models import UserProfile


class UserProfileRepository:
    """Data access for the user projection."""

    async def get_by_id(self, db: AsyncSession, user_id: str) -> Optional[UserProfile]:
        result = await db.execute(select(UserProfile).where(UserProfile.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[UserProfile]:
        result = await db.execute(select(UserProfile).where(UserProfile.email == email))
        return result.scalar_one_or_none()

    async def add(self, db: AsyncSession, profile: UserProfile) -> UserProfile:
        """Insert and commit; IntegrityError propagates to the caller."""
        db.add(profile)
        await db.commit()
        return profile
