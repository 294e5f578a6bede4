"""
User administration: admin-created accounts, activation, deactivation and
role changes. Every change is published for the other services and audited.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.events import AuditContext, AuditEmitter, AuditOutcome, EventPublisher
from shared.events.payloads import (
    UserActivatedPayload,
    UserCreatedPayload,
    UserDeactivatedPayload,
    UserRoleChangedPayload,
)

from ...core.exceptions import DuplicateEmail, InsufficientPrivileges, UserNotFound
from ...core.roles import UserRole, is_admin, outranks
from ...core.security import SecurityService
from ...core.timeutils import ensure_aware
from ...models.user import User
from ...repositories.user_repository import UserRepository
from ...schemas.auth_schemas import CreateUserRequest, CreateUserResult, UserSummary
from .token_service import TokenService

logger = structlog.get_logger()


class UserAdminService:
    """Administrative operations on credential records."""

    def __init__(
        self,
        user_repository: UserRepository,
        token_service: TokenService,
        event_publisher: EventPublisher,
        audit_emitter: AuditEmitter
    ):
        self.user_repository = user_repository
        self.token_service = token_service
        self.event_publisher = event_publisher
        self.audit_emitter = audit_emitter

    async def get_me(self, db: AsyncSession, user_id: str) -> UserSummary:
        user = await self._get_user(db, user_id)
        return UserSummary.model_validate(user)

    async def create_user(
        self,
        db: AsyncSession,
        data: CreateUserRequest,
        actor: User,
        context: Optional[AuditContext] = None
    ) -> CreateUserResult:
        """
        Create an account with a generated temporary password that must be
        changed on first login.

        Args:
            db: Database session
            data: New user details
            actor: Administrator performing the action
            context: Client network context for the audit trail

        Returns:
            The created user and its temporary password

        Raises:
            InsufficientPrivileges: Actor is not an administrator or cannot grant the role
            DuplicateEmail: If the email is already registered
        """
        self._require_admin(actor)
        if not outranks(actor.role, data.role):
            raise InsufficientPrivileges("Cannot assign role equal to or higher than your own")

        email = data.email
        if await self.user_repository.get_by_email(db, email):
            raise DuplicateEmail()

        temporary_password = SecurityService.generate_temporary_password()
        user = await self.user_repository.create(
            db,
            email=email,
            password_hash=await SecurityService.get_password_hash(temporary_password),
            first_name=data.first_name,
            last_name=data.last_name,
            role=data.role,
            phone_number=data.phone_number,
            must_change_password=True
        )

        context = self._actor_context(actor, context)
        await self.event_publisher.publish_user_created(
            UserCreatedPayload(
                user_id=user.id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                role=user.role.value,
                is_active=user.is_active,
                must_change_password=True,
                phone_number=user.phone_number,
                created_at=ensure_aware(user.created_at).isoformat(),
                created_by=actor.id
            ),
            correlation_id=context.correlation_id
        )
        await self.audit_emitter.log_action(
            "CREATE",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=user.id,
            new_values={"email": user.email, "role": user.role.value}
        )

        logger.info("User created by administrator", user_id=user.id, created_by=actor.id)
        return CreateUserResult(
            user=UserSummary.model_validate(user),
            temporary_password=temporary_password
        )

    async def activate_user(
        self,
        db: AsyncSession,
        user_id: str,
        actor: User,
        context: Optional[AuditContext] = None
    ) -> UserSummary:
        """Re-activate an account; a no-op if it is already active."""
        self._require_admin(actor)
        user = await self._get_user(db, user_id)
        if user.is_active:
            return UserSummary.model_validate(user)

        await self.user_repository.set_active(db, user, True)

        context = self._actor_context(actor, context)
        await self.event_publisher.publish_user_activated(
            UserActivatedPayload(user_id=user.id, email=user.email, activated_by=actor.id),
            correlation_id=context.correlation_id
        )
        await self.audit_emitter.log_action(
            "UPDATE",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=user.id,
            old_values={"isActive": False},
            new_values={"isActive": True}
        )

        logger.info("User activated", user_id=user.id, activated_by=actor.id)
        return UserSummary.model_validate(user)

    async def deactivate_user(
        self,
        db: AsyncSession,
        user_id: str,
        actor: User,
        reason: Optional[str] = None,
        context: Optional[AuditContext] = None
    ) -> UserSummary:
        """
        Deactivate an account and revoke all of its refresh tokens.
        A no-op if it is already inactive.

        Raises:
            UserNotFound: Unknown user id
            InsufficientPrivileges: Actor does not outrank the target, or targets itself
        """
        self._require_admin(actor)
        user = await self._get_user(db, user_id)
        if user.id == actor.id:
            raise InsufficientPrivileges("Cannot deactivate your own account")
        if not outranks(actor.role, user.role):
            raise InsufficientPrivileges("Cannot modify user with equal or higher privileges")
        if not user.is_active:
            return UserSummary.model_validate(user)

        await self.user_repository.set_active(db, user, False)
        revoked = await self.token_service.revoke_all(db, user.id)

        context = self._actor_context(actor, context)
        await self.event_publisher.publish_user_deactivated(
            UserDeactivatedPayload(
                user_id=user.id,
                email=user.email,
                reason=reason,
                deactivated_by=actor.id
            ),
            correlation_id=context.correlation_id
        )
        await self.audit_emitter.log_action(
            "UPDATE",
            "user",
            AuditOutcome.SUCCESS,
            context,
            resource_id=user.id,
            old_values={"isActive": True},
            new_values={"isActive": False},
            metadata={"reason": reason, "revokedTokens": revoked}
        )

        logger.info("User deactivated", user_id=user.id, deactivated_by=actor.id, revoked_tokens=revoked)
        return UserSummary.model_validate(user)

    async def change_role(
        self,
        db: AsyncSession,
        user_id: str,
        new_role: UserRole,
        actor: User,
        context: Optional[AuditContext] = None
    ) -> UserSummary:
        """
        Change a user's role.

        The actor must outrank both the target's current role and the new role.

        Raises:
            UserNotFound: Unknown user id
            InsufficientPrivileges: Actor lacks the privilege level
        """
        self._require_admin(actor)
        user = await self._get_user(db, user_id)
        if not outranks(actor.role, user.role):
            raise InsufficientPrivileges("Cannot modify role of user with equal or higher privileges")
        if not outranks(actor.role, new_role):
            raise InsufficientPrivileges("Cannot assign role equal to or higher than your own")

        old_role = user.role
        if old_role == new_role:
            return UserSummary.model_validate(user)

        await self.user_repository.set_role(db, user, new_role)

        context = self._actor_context(actor, context)
        await self.event_publisher.publish_user_role_changed(
            UserRoleChangedPayload(
                user_id=user.id,
                email=user.email,
                old_role=old_role.value,
                new_role=new_role.value,
                changed_by=actor.id
            ),
            correlation_id=context.correlation_id
        )
        await self.audit_emitter.log_role_changed(user.id, old_role.value, new_role.value, context)

        logger.info(
            "User role changed",
            user_id=user.id,
            old_role=old_role.value,
            new_role=new_role.value,
            changed_by=actor.id
        )
        return UserSummary.model_validate(user)

    async def _get_user(self, db: AsyncSession, user_id: str) -> User:
        user = await self.user_repository.get_by_id(db, user_id)
        if user is None:
            raise UserNotFound()
        return user

    @staticmethod
    def _require_admin(actor: User) -> None:
        if not is_admin(actor.role):
            raise InsufficientPrivileges()

    @staticmethod
    def _actor_context(actor: User, context: Optional[AuditContext]) -> AuditContext:
        context = context or AuditContext()
        context.user_id = actor.id
        context.user_email = actor.email
        context.user_role = UserRole(actor.role).value
        return context
