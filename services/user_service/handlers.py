"""
Idempotent handlers applying user.* events to the local projection.

Events may be redelivered, so every handler leaves the same state when it
runs twice for one envelope.
"""
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
import structlog

from shared.events import EventEnvelope
from shared.events.payloads import (
    UserActivatedPayload,
    UserCreatedPayload,
    UserDeactivatedPayload,
    UserRoleChangedPayload,
    UserUpdatedPayload,
)

from .models import UserProfile
from .repository import UserProfileRepository

logger = structlog.get_logger()

# wire field name -> projection column
UPDATABLE_FIELDS: Dict[str, str] = {
    "email": "email",
    "firstName": "first_name",
    "lastName": "last_name",
    "phoneNumber": "phone_number",
    "role": "role",
    "isActive": "is_active",
    "mustChangePassword": "must_change_password",
}


class UserEventHandlers:
    """Applies auth service user events to the user_profiles table."""

    def __init__(self, session_factory: async_sessionmaker, repository: UserProfileRepository = None):
        self.session_factory = session_factory
        self.repository = repository or UserProfileRepository()

    async def handle_user_created(self, envelope: EventEnvelope) -> None:
        """Create the profile unless one with the same email already exists."""
        payload = UserCreatedPayload.from_dict(envelope.payload)

        async with self.session_factory() as db:
            if await self.repository.get_by_email(db, payload.email):
                logger.info("User already exists, skipping", user_id=payload.user_id, event_id=envelope.event_id)
                return

            profile = UserProfile(
                id=payload.user_id,
                email=payload.email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                role=payload.role,
                phone_number=payload.phone_number,
                is_active=payload.is_active,
                must_change_password=payload.must_change_password
            )
            try:
                await self.repository.add(db, profile)
            except IntegrityError:
                await db.rollback()
                # only a duplicate of this user means a concurrent delivery won the race
                if not await self._exists(db, payload):
                    raise
                logger.info("User already synced by concurrent delivery", user_id=payload.user_id)
                return

        logger.info("User synced", user_id=payload.user_id, event_id=envelope.event_id)

    async def handle_user_activated(self, envelope: EventEnvelope) -> None:
        payload = UserActivatedPayload.from_dict(envelope.payload)
        await self._apply(
            envelope,
            payload.user_id,
            {"is_active": True, "deactivated_at": None, "deactivated_by": None}
        )

    async def handle_user_deactivated(self, envelope: EventEnvelope) -> None:
        payload = UserDeactivatedPayload.from_dict(envelope.payload)
        await self._apply(
            envelope,
            payload.user_id,
            {
                "is_active": False,
                "deactivated_at": envelope.timestamp,
                "deactivated_by": payload.deactivated_by
            }
        )

    async def handle_user_role_changed(self, envelope: EventEnvelope) -> None:
        payload = UserRoleChangedPayload.from_dict(envelope.payload)
        await self._apply(envelope, payload.user_id, {"role": payload.new_role})

    async def handle_user_updated(self, envelope: EventEnvelope) -> None:
        """Apply the "new" side of each known changed field; unknown fields are ignored."""
        payload = UserUpdatedPayload.from_dict(envelope.payload)
        values = {
            UPDATABLE_FIELDS[name]: change.get("new")
            for name, change in payload.changes.items()
            if name in UPDATABLE_FIELDS and isinstance(change, dict)
        }
        if not values:
            logger.debug("No projected fields changed", user_id=payload.user_id, event_id=envelope.event_id)
            return
        await self._apply(envelope, payload.user_id, values)

    async def _apply(self, envelope: EventEnvelope, user_id: str, values: Dict[str, Any]) -> None:
        async with self.session_factory() as db:
            profile = await self.repository.get_by_id(db, user_id)
            if profile is None:
                logger.warning(
                    "User not found for event, skipping",
                    event_type=envelope.event_type,
                    user_id=user_id,
                    event_id=envelope.event_id
                )
                return

            for column, value in values.items():
                setattr(profile, column, value)
            await db.commit()

        logger.info("User projection updated", event_type=envelope.event_type, user_id=user_id)

    async def _exists(self, db, payload: UserCreatedPayload) -> bool:
        if await self.repository.get_by_id(db, payload.user_id):
            return True
        return await self.repository.get_by_email(db, payload.email) is not None
