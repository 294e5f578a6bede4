"""
Authentication service handling registration and login with brute-force
lockout.
"""
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.events import AuditContext, AuditEmitter, AuditOutcome, EventPublisher
from shared.events.payloads import UserCreatedPayload

from ...core.config import Settings, settings as default_settings
from ...core.exceptions import (
    AccountDeactivated,
    AccountLocked,
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
)
from ...core.security import SecurityService
from ...core.timeutils import ensure_aware, utcnow
from ...repositories.user_repository import UserRepository
from ...schemas.auth_schemas import LoginResult, RegisterRequest, RegisterResponse, UserSummary
from .token_service import TokenService

logger = structlog.get_logger()


class AuthenticationService:
    """Service responsible for user authentication operations."""

    def __init__(
        self,
        user_repository: UserRepository,
        token_service: TokenService,
        event_publisher: EventPublisher,
        audit_emitter: AuditEmitter,
        settings: Optional[Settings] = None
    ):
        self.user_repository = user_repository
        self.token_service = token_service
        self.event_publisher = event_publisher
        self.audit_emitter = audit_emitter
        self.settings = settings or default_settings

    async def login(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        context: Optional[AuditContext] = None
    ) -> LoginResult:
        """
        Authenticate a user and issue tokens.

        Args:
            db: Database session
            email: User email
            password: User password
            context: Client network context for the audit trail

        Returns:
            Token pair and user summary

        Raises:
            InvalidCredentials: Unknown email or wrong password
            AccountDeactivated: Account is inactive
            AccountLocked: Lockout has not expired yet
        """
        context = context or AuditContext()
        now = utcnow()

        try:
            user = await self.user_repository.get_by_email(db, email)

            if not user:
                await SecurityService.verify_dummy_password(password)
                await self._log_failed_login(email, "user_not_found", context)
                raise InvalidCredentials()

            context.user_id = user.id
            context.user_role = user.role.value

            if not user.is_active:
                await self._log_failed_login(email, "account_deactivated", context)
                raise AccountDeactivated()

            if user.is_locked(now):
                await self._log_failed_login(email, "account_locked", context)
                raise AccountLocked()

            if not await SecurityService.verify_password(password, user.password_hash):
                user = await self.user_repository.record_failed_login(
                    db,
                    user,
                    max_attempts=self.settings.MAX_FAILED_LOGIN_ATTEMPTS,
                    lockout_duration=timedelta(minutes=self.settings.LOCKOUT_DURATION_MINUTES),
                    now=now
                )
                if user.is_locked(now):
                    logger.warning(
                        "Account locked after repeated failed logins",
                        user_id=user.id,
                        attempts=user.failed_login_attempts
                    )
                await self._log_failed_login(email, "invalid_password", context)
                raise InvalidCredentials()

            await self.user_repository.record_successful_login(db, user, now)

            tokens = await self.token_service.issue(
                db,
                user,
                ip_address=context.ip_address,
                device_info=context.user_agent
            )

            await self.audit_emitter.log_login(email, success=True, context=context)
            logger.info("User authenticated", user_id=user.id)

            return LoginResult(
                **tokens.model_dump(),
                user=UserSummary.model_validate(user)
            )

        except AuthError:
            raise
        except Exception as e:
            logger.error("Authentication failed", error=str(e))
            raise

    async def register(
        self,
        db: AsyncSession,
        data: RegisterRequest,
        context: Optional[AuditContext] = None
    ) -> RegisterResponse:
        """
        Register a new user and announce it to the other services.

        Raises:
            DuplicateEmail: If the email is already registered
        """
        context = context or AuditContext()
        email = data.email

        if await self.user_repository.get_by_email(db, email):
            raise DuplicateEmail()

        password_hash = await SecurityService.get_password_hash(data.password)
        user = await self.user_repository.create(
            db,
            email=email,
            password_hash=password_hash,
            first_name=data.first_name,
            last_name=data.last_name,
            role=data.role,
            phone_number=data.phone_number
        )

        await self.event_publisher.publish_user_created(
            UserCreatedPayload(
                user_id=user.id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                role=user.role.value,
                is_active=user.is_active,
                must_change_password=user.must_change_password,
                phone_number=user.phone_number,
                created_at=ensure_aware(user.created_at).isoformat()
            ),
            correlation_id=context.correlation_id
        )

        context.user_id = user.id
        context.user_email = user.email
        await self.audit_emitter.log_action(
            "REGISTER",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=user.id
        )

        logger.info("User registered", user_id=user.id)
        return RegisterResponse(id=user.id, email=user.email)

    async def _log_failed_login(self, email: str, reason: str, context: AuditContext) -> None:
        logger.warning("Failed login attempt", reason=reason, user_id=context.user_id)
        await self.audit_emitter.log_login(email, success=False, context=context, error_message=reason)
