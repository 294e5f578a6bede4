"""
Refresh token repository: persistence for rotation and revocation.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import structlog

from ..models.refresh_token import RefreshToken

logger = structlog.get_logger()


class RefreshTokenRepository:
    """Repository for refresh token records."""

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        jti: str,
        token_hash: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        device_info: Optional[str] = None
    ) -> RefreshToken:
        record = RefreshToken(
            user_id=user_id,
            jti=jti,
            token_hash=token_hash,
            expires_at=expires_at,
            ip_address=ip_address,
            device_info=device_info,
            is_revoked=False
        )
        db.add(record)
        await db.commit()
        return record

    async def get_by_jti_and_user(
        self,
        db: AsyncSession,
        jti: str,
        user_id: str
    ) -> Optional[RefreshToken]:
        result = await db.execute(
            select(RefreshToken)
            .where(RefreshToken.jti == jti, RefreshToken.user_id == user_id)
            # bulk revocations bypass the identity map
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def revoke(self, db: AsyncSession, record: RefreshToken) -> bool:
        """
        Revoke a single record.

        Returns:
            False if another request revoked it first
        """
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        record.is_revoked = True
        return result.rowcount == 1

    async def revoke_all_for_user(self, db: AsyncSession, user_id: str) -> int:
        """Revoke every live refresh token of a user; returns the number revoked."""
        result = await db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount
