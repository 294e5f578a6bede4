"""
Tests for the user service projection handlers.
"""
import pytest
import pytest_asyncio
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select

from shared.events import EnvelopeValidationError, EventRoutingKeys
from shared.events.payloads import (
    UserActivatedPayload,
    UserDeactivatedPayload,
    UserRoleChangedPayload,
    UserUpdatedPayload,
)
from services.user_service.handlers import UserEventHandlers
from services.user_service.models import UserProfile
from services.user_service.repository import UserProfileRepository

from tests.factories import envelope, user_created_envelope, user_created_payload

USER_ID = user_created_payload().user_id


@pytest.fixture
def handlers(user_service_session_factory) -> UserEventHandlers:
    return UserEventHandlers(user_service_session_factory)


async def _profiles(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(UserProfile))
        return result.scalars().all()


async def _profile(session_factory, user_id: str = USER_ID) -> UserProfile:
    async with session_factory() as db:
        return await db.get(UserProfile, user_id)


class TestUserCreated:
    """Test cases for user.created."""

    @pytest.mark.asyncio
    async def test_creates_profile(self, handlers, user_service_session_factory):
        await handlers.handle_user_created(user_created_envelope(phone_number="+44 20 7946 0000"))

        profile = await _profile(user_service_session_factory)
        assert profile.email == "doctor@example.com"
        assert profile.first_name == "Jane"
        assert profile.role == "doctor"
        assert profile.phone_number == "+44 20 7946 0000"
        assert profile.is_active is True

    @pytest.mark.asyncio
    async def test_redelivered_envelope_is_applied_once(self, handlers, user_service_session_factory):
        # Arrange
        event = user_created_envelope()

        # Act
        await handlers.handle_user_created(event)
        await handlers.handle_user_created(event)

        # Assert
        assert len(await _profiles(user_service_session_factory)) == 1

    @pytest.mark.asyncio
    async def test_second_event_for_same_email_is_skipped(self, handlers, user_service_session_factory):
        await handlers.handle_user_created(user_created_envelope())
        await handlers.handle_user_created(
            user_created_envelope(user_id="8c4e2a5b-0000-4000-8000-000000000001", first_name="Other")
        )

        profiles = await _profiles(user_service_session_factory)
        assert len(profiles) == 1
        assert profiles[0].first_name == "Jane"

    @pytest.mark.asyncio
    async def test_concurrent_insert_is_treated_as_applied(self, user_service_session_factory):
        class StaleReadRepository(UserProfileRepository):
            async def get_by_email(self, db, email):
                return None

        handlers = UserEventHandlers(user_service_session_factory, StaleReadRepository())
        event = user_created_envelope()

        await handlers.handle_user_created(event)
        await handlers.handle_user_created(event)

        assert len(await _profiles(user_service_session_factory)) == 1

    @pytest.mark.asyncio
    async def test_invalid_payload_raises_validation_error(self, handlers, user_service_session_factory):
        with pytest.raises(EnvelopeValidationError):
            await handlers.handle_user_created(envelope(EventRoutingKeys.USER_CREATED, {"userId": USER_ID}))

        async with user_service_session_factory() as db:
            count = await db.scalar(select(func.count()).select_from(UserProfile))
        assert count == 0

    @pytest.mark.asyncio
    async def test_null_required_field_is_rejected(self, handlers, user_service_session_factory):
        payload = dict(user_created_payload().to_dict(), firstName=None)

        with pytest.raises(EnvelopeValidationError, match="firstName"):
            await handlers.handle_user_created(envelope(EventRoutingKeys.USER_CREATED, payload))

        assert await _profiles(user_service_session_factory) == []

    @pytest.mark.asyncio
    async def test_constraint_failure_other_than_duplicate_is_raised(self, user_service_session_factory):
        class BrokenRepository(UserProfileRepository):
            async def add(self, db, profile):
                raise IntegrityError("INSERT INTO user_profiles", {}, Exception("NOT NULL constraint failed"))

        handlers = UserEventHandlers(user_service_session_factory, BrokenRepository())

        with pytest.raises(IntegrityError):
            await handlers.handle_user_created(user_created_envelope())

        assert await _profiles(user_service_session_factory) == []


class TestUserChanges:
    """Test cases for update, role, activation and deactivation events."""

    @pytest_asyncio.fixture
    async def existing(self, handlers):
        await handlers.handle_user_created(user_created_envelope())

    @pytest.mark.asyncio
    async def test_deactivated(self, handlers, user_service_session_factory, existing):
        event = envelope(
            EventRoutingKeys.USER_DEACTIVATED,
            UserDeactivatedPayload(user_id=USER_ID, email="doctor@example.com", deactivated_by="admin-1")
        )

        await handlers.handle_user_deactivated(event)
        await handlers.handle_user_deactivated(event)

        profile = await _profile(user_service_session_factory)
        assert profile.is_active is False
        assert profile.deactivated_by == "admin-1"
        assert profile.deactivated_at is not None

    @pytest.mark.asyncio
    async def test_activated_clears_deactivation(self, handlers, user_service_session_factory, existing):
        await handlers.handle_user_deactivated(envelope(
            EventRoutingKeys.USER_DEACTIVATED,
            UserDeactivatedPayload(user_id=USER_ID, email="doctor@example.com", deactivated_by="admin-1")
        ))

        await handlers.handle_user_activated(envelope(
            EventRoutingKeys.USER_ACTIVATED,
            UserActivatedPayload(user_id=USER_ID, email="doctor@example.com")
        ))

        profile = await _profile(user_service_session_factory)
        assert profile.is_active is True
        assert profile.deactivated_at is None
        assert profile.deactivated_by is None

    @pytest.mark.asyncio
    async def test_role_changed(self, handlers, user_service_session_factory, existing):
        await handlers.handle_user_role_changed(envelope(
            EventRoutingKeys.USER_ROLE_CHANGED,
            UserRoleChangedPayload(
                user_id=USER_ID, email="doctor@example.com", old_role="doctor", new_role="consultant"
            )
        ))

        profile = await _profile(user_service_session_factory)
        assert profile.role == "consultant"

    @pytest.mark.asyncio
    async def test_updated_applies_known_fields_only(self, handlers, user_service_session_factory, existing):
        await handlers.handle_user_updated(envelope(
            EventRoutingKeys.USER_UPDATED,
            UserUpdatedPayload(
                user_id=USER_ID,
                changes={
                    "firstName": {"old": "Jane", "new": "Janet"},
                    "favouriteColour": {"old": "red", "new": "blue"},
                }
            )
        ))

        profile = await _profile(user_service_session_factory)
        assert profile.first_name == "Janet"
        assert profile.last_name == "Smith"

    @pytest.mark.asyncio
    async def test_event_for_unknown_user_is_skipped(self, handlers, user_service_session_factory):
        await handlers.handle_user_role_changed(envelope(
            EventRoutingKeys.USER_ROLE_CHANGED,
            UserRoleChangedPayload(user_id="nobody", email="x@example.com", old_role="doctor", new_role="nurse")
        ))

        assert await _profiles(user_service_session_factory) == []
