"""
Token service: access/refresh issuance, single-use refresh rotation and
revocation.
"""
import hmac
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.events import AuditContext, AuditEmitter

from ...core.config import Settings, settings as default_settings
from ...core.exceptions import AuthError, InvalidToken, TokenExpired, TokenRevoked
from ...core.security import SecurityService
from ...core.timeutils import utcnow
from ...models.user import User
from ...repositories.refresh_token_repository import RefreshTokenRepository
from ...repositories.user_repository import UserRepository
from ...schemas.auth_schemas import AuthTokens

logger = structlog.get_logger()


class TokenService:
    """Service responsible for token lifecycle."""

    def __init__(
        self,
        refresh_token_repository: RefreshTokenRepository,
        user_repository: UserRepository,
        audit_emitter: AuditEmitter,
        settings: Optional[Settings] = None
    ):
        self.refresh_token_repository = refresh_token_repository
        self.user_repository = user_repository
        self.audit_emitter = audit_emitter
        self.settings = settings or default_settings

    async def issue(
        self,
        db: AsyncSession,
        user: User,
        ip_address: Optional[str] = None,
        device_info: Optional[str] = None
    ) -> AuthTokens:
        """
        Issue an access/refresh token pair and persist the refresh record.

        Args:
            db: Database session
            user: Authenticated user
            ip_address: Client IP address stored with the refresh record
            device_info: Client user agent / device description

        Returns:
            Token pair with the access token lifetime in seconds
        """
        now = utcnow()
        access_lifetime = timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        refresh_lifetime = timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)

        access_token = SecurityService.create_access_token(
            {
                "sub": user.id,
                "email": user.email,
                "role": user.role.value,
                "firstName": user.first_name,
                "lastName": user.last_name,
                "jti": SecurityService.generate_jti(),
            },
            expires_delta=access_lifetime,
            now=now
        )

        refresh_jti = SecurityService.generate_jti()
        refresh_token = SecurityService.create_refresh_token(
            user.id, refresh_jti, expires_delta=refresh_lifetime, now=now
        )

        await self.refresh_token_repository.create(
            db,
            user_id=user.id,
            jti=refresh_jti,
            token_hash=SecurityService.hash_token(refresh_token),
            expires_at=now + refresh_lifetime,
            ip_address=ip_address,
            device_info=device_info[:500] if device_info else None
        )

        logger.info("Tokens issued", user_id=user.id, refresh_jti=refresh_jti)

        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(access_lifetime.total_seconds())
        )

    async def refresh(
        self,
        db: AsyncSession,
        raw_refresh_token: str,
        ip_address: Optional[str] = None,
        device_info: Optional[str] = None
    ) -> AuthTokens:
        """
        Redeem a refresh token for a new pair. The redeemed record is revoked
        before its successor is minted, so every refresh token is single-use.

        Raises:
            InvalidToken: Bad signature, unknown record, hash mismatch or unusable user
            TokenRevoked: Record already revoked (reuse of a rotated token)
            TokenExpired: Record past its expiry
        """
        try:
            claims = SecurityService.decode_refresh_token(raw_refresh_token)
            if not claims or not claims.get("sub") or not claims.get("jti"):
                raise InvalidToken()

            user_id, jti = claims["sub"], claims["jti"]

            record = await self.refresh_token_repository.get_by_jti_and_user(db, jti, user_id)
            if record is None:
                raise InvalidToken()

            if record.is_revoked:
                logger.warning("Revoked refresh token presented", user_id=user_id, jti=jti)
                raise TokenRevoked()

            if record.is_expired():
                raise TokenExpired()

            if not hmac.compare_digest(record.token_hash, SecurityService.hash_token(raw_refresh_token)):
                logger.warning("Refresh token hash mismatch", user_id=user_id, jti=jti)
                raise InvalidToken()

            user = await self.user_repository.get_by_id(db, user_id)
            if user is None or not user.is_active:
                raise InvalidToken()

            if not await self.refresh_token_repository.revoke(db, record):
                # a concurrent refresh redeemed it first
                raise TokenRevoked()

            return await self.issue(db, user, ip_address=ip_address, device_info=device_info)

        except AuthError:
            raise
        except Exception as e:
            logger.error("Token refresh failed", error=str(e))
            raise

    async def logout(
        self,
        db: AsyncSession,
        user: User,
        context: Optional[AuditContext] = None
    ) -> int:
        """
        Revoke every live refresh token of the user.

        Returns:
            Number of revoked tokens
        """
        revoked = await self.refresh_token_repository.revoke_all_for_user(db, user.id)

        context = context or AuditContext()
        context.user_id = user.id
        context.user_email = user.email
        context.user_role = user.role.value
        await self.audit_emitter.log_logout(context)

        logger.info("User logged out", user_id=user.id, revoked_tokens=revoked)
        return revoked

    async def revoke_all(self, db: AsyncSession, user_id: str) -> int:
        """Revoke every live refresh token of a user without auditing a logout."""
        return await self.refresh_token_repository.revoke_all_for_user(db, user_id)

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """
        Verify an access token's signature and expiry.

        Returns:
            Token claims

        Raises:
            InvalidToken: If the token is invalid or expired
        """
        claims = SecurityService.decode_access_token(token)
        if not claims or not claims.get("sub"):
            raise InvalidToken("Invalid or expired token")
        return claims
