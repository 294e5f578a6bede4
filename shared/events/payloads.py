"""
Typed payloads carried inside event envelopes.

Payloads are plain dataclasses with snake_case attributes; on the wire they
use camelCase keys and omit fields that are None.
"""

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar

from .exceptions import EnvelopeValidationError
from .schemas import validate_payload
from .topology import EventRoutingKeys

T = TypeVar("T", bound="EventPayload")


def to_camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(word.capitalize() for word in tail)


@dataclass
class EventPayload:
    """Base class for envelope payloads"""

    EVENT_TYPE: ClassVar[str]

    def to_dict(self) -> Dict[str, Any]:
        """Convert payload to its camelCase wire form"""
        return {
            to_camel(f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """
        Build a payload from its wire form, ignoring unknown keys.

        Raises:
            EnvelopeValidationError: If the payload does not match the schema
                for its routing key
        """
        validate_payload(cls.EVENT_TYPE, data)

        kwargs = {}
        for f in fields(cls):
            key = to_camel(f.name)
            if key in data:
                kwargs[f.name] = data[key]
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise EnvelopeValidationError(f"Invalid {cls.__name__}: {e}") from e


# User events

@dataclass
class UserCreatedPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.USER_CREATED

    user_id: str
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool = True
    must_change_password: bool = False
    phone_number: Optional[str] = None
    created_at: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class UserUpdatedPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.USER_UPDATED

    user_id: str
    changes: Dict[str, Dict[str, Any]]  # field -> {"old": ..., "new": ...}
    updated_by: Optional[str] = None


@dataclass
class UserActivatedPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.USER_ACTIVATED

    user_id: str
    email: str
    activated_by: Optional[str] = None


@dataclass
class UserDeactivatedPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.USER_DEACTIVATED

    user_id: str
    email: str
    reason: Optional[str] = None
    deactivated_by: Optional[str] = None


@dataclass
class UserRoleChangedPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.USER_ROLE_CHANGED

    user_id: str
    email: str
    old_role: str
    new_role: str
    changed_by: Optional[str] = None


# Audit events

@dataclass
class AuditLogPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.AUDIT_LOG

    action: str
    resource: str
    status: str  # success | failure | error
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    session_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class DataAccessLogPayload(EventPayload):
    EVENT_TYPE = EventRoutingKeys.AUDIT_DATA_ACCESS

    user_id: str
    user_email: str
    user_role: str
    patient_id: str
    data_type: str
    access_type: str  # read | write | delete | export
    sensitivity_level: str = "phi"  # low | medium | high | phi
    patient_mrn: Optional[str] = None
    fields_accessed: Optional[List[str]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_emergency_access: Optional[bool] = None
    break_glass_reason: Optional[str] = None
