"""
User repository implementation following the Repository pattern.
Handles all credential record data access; writes are committed here.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import structlog

from ..core.exceptions import DuplicateEmail
from ..core.roles import UserRole
from ..core.timeutils import utcnow
from ..models.user import User

logger = structlog.get_logger()


class UserRepository:
    """Repository for user credential records."""

    async def get_by_id(self, db: AsyncSession, user_id: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        """Exact-match lookup; emails are normalised before they reach the repository."""
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def create(
        self,
        db: AsyncSession,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        phone_number: Optional[str] = None,
        must_change_password: bool = False,
        is_active: bool = True
    ) -> User:
        """
        Create a new credential record.

        Args:
            db: Database session
            email: Normalised user email
            password_hash: bcrypt hash (never the plain password)
            first_name: User's first name
            last_name: User's last name
            role: Assigned role
            phone_number: Optional phone number
            must_change_password: Force a password change on next login
            is_active: Whether user is active

        Returns:
            Created user instance

        Raises:
            DuplicateEmail: If the email is already registered
        """
        user = User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
            phone_number=phone_number,
            must_change_password=must_change_password,
            is_active=is_active,
            failed_login_attempts=0
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateEmail()

        await db.refresh(user)
        logger.info("User created", user_id=user.id, role=user.role.value)
        return user

    async def record_failed_login(
        self,
        db: AsyncSession,
        user: User,
        max_attempts: int,
        lockout_duration: timedelta,
        now: Optional[datetime] = None
    ) -> User:
        """
        Atomically increment the failed-login counter and lock the account
        when the counter reaches max_attempts.

        Returns:
            The refreshed user
        """
        now = now or utcnow()
        attempts = User.failed_login_attempts + 1
        stmt = (
            update(User)
            .where(User.id == user.id)
            .values(
                failed_login_attempts=attempts,
                locked_until=case(
                    (attempts >= max_attempts, now + lockout_duration),
                    else_=User.locked_until
                ),
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        await db.commit()
        await db.refresh(user)
        return user

    async def record_successful_login(
        self,
        db: AsyncSession,
        user: User,
        now: Optional[datetime] = None
    ) -> User:
        """Reset the counter, clear any lockout and stamp last_login_at."""
        user.failed_login_attempts = 0
        user.locked_until = None
        user.last_login_at = now or utcnow()
        await db.commit()
        return user

    async def set_active(self, db: AsyncSession, user: User, is_active: bool) -> User:
        user.is_active = is_active
        if is_active:
            user.failed_login_attempts = 0
            user.locked_until = None
        await db.commit()
        return user

    async def set_role(self, db: AsyncSession, user: User, role: UserRole) -> User:
        user.role = role
        await db.commit()
        return user
