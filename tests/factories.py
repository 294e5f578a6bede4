"""
Test data builders.
"""
from shared.events import EventEnvelope, EventRoutingKeys
from shared.events.payloads import UserCreatedPayload

DEFAULT_PASSWORD = "Str0ng-Passw0rd!"


def user_created_payload(**overrides) -> UserCreatedPayload:
    data = {
        "user_id": "2b1f9a52-6f0e-4d8c-a3f4-0c6b1e9d7a10",
        "email": "doctor@example.com",
        "first_name": "Jane",
        "last_name": "Smith",
        "role": "doctor",
    }
    data.update(overrides)
    return UserCreatedPayload(**data)


def envelope(routing_key: str, payload, source: str = "auth-service") -> EventEnvelope:
    """Wrap a typed payload or plain mapping in a fresh envelope."""
    if hasattr(payload, "to_dict"):
        payload = payload.to_dict()
    return EventEnvelope.create(routing_key, source, payload)


def user_created_envelope(**overrides) -> EventEnvelope:
    return envelope(EventRoutingKeys.USER_CREATED, user_created_payload(**overrides))
