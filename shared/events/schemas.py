"""
JSON schemas for event payloads, keyed by routing key.

Consumers validate the payload of every inbound envelope against the schema
for its routing key before anything is written, so a payload with a missing
or null required field is rejected instead of surfacing later as a database
error. String limits follow the columns the consumers store them in.
Unknown keys are allowed so producers can add fields ahead of consumers.
"""

from typing import Any, Dict, Mapping

from jsonschema import Draft7Validator

from .exceptions import EnvelopeValidationError
from .topology import EventRoutingKeys


def _string(max_length: int = 255) -> Dict[str, Any]:
    return {"type": "string", "minLength": 1, "maxLength": max_length}


def _optional(schema: Dict[str, Any]) -> Dict[str, Any]:
    optional = dict(schema)
    optional["type"] = [schema["type"], "null"]
    optional.pop("minLength", None)
    return optional


def _payload(required: Dict[str, Dict[str, Any]], optional: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    properties = dict(required)
    properties.update({key: _optional(schema) for key, schema in optional.items()})
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "required": list(required),
        "properties": properties,
    }


USER_ID = _string(36)
EMAIL = _string(255)
ROLE = _string(50)

PAYLOAD_SCHEMAS: Dict[str, Dict[str, Any]] = {
    EventRoutingKeys.USER_CREATED: _payload(
        required={
            "userId": USER_ID,
            "email": EMAIL,
            "firstName": _string(100),
            "lastName": _string(100),
            "role": ROLE,
        },
        optional={
            "isActive": {"type": "boolean"},
            "mustChangePassword": {"type": "boolean"},
            "phoneNumber": _string(50),
            "createdAt": _string(64),
            "createdBy": USER_ID,
        }
    ),
    EventRoutingKeys.USER_UPDATED: _payload(
        required={
            "userId": USER_ID,
            "changes": {
                "type": "object",
                "additionalProperties": {
                    "type": "object",
                    "required": ["old", "new"],
                },
            },
        },
        optional={"updatedBy": USER_ID}
    ),
    EventRoutingKeys.USER_ACTIVATED: _payload(
        required={"userId": USER_ID, "email": EMAIL},
        optional={"activatedBy": USER_ID}
    ),
    EventRoutingKeys.USER_DEACTIVATED: _payload(
        required={"userId": USER_ID, "email": EMAIL},
        optional={"reason": _string(1000), "deactivatedBy": USER_ID}
    ),
    EventRoutingKeys.USER_ROLE_CHANGED: _payload(
        required={"userId": USER_ID, "email": EMAIL, "oldRole": ROLE, "newRole": ROLE},
        optional={"changedBy": USER_ID}
    ),
    EventRoutingKeys.AUDIT_LOG: _payload(
        required={
            "action": _string(100),
            "resource": _string(100),
            "status": {"type": "string", "enum": ["success", "failure", "error"]},
        },
        optional={
            "userId": USER_ID,
            "userEmail": EMAIL,
            "userRole": ROLE,
            "resourceId": _string(100),
            "ipAddress": _string(45),
            "userAgent": {"type": "string"},
            "requestId": _string(100),
            "sessionId": _string(100),
            "oldValues": {"type": "object"},
            "newValues": {"type": "object"},
            "errorMessage": {"type": "string"},
            "metadata": {"type": "object"},
        }
    ),
    EventRoutingKeys.AUDIT_DATA_ACCESS: _payload(
        required={
            "userId": USER_ID,
            "userEmail": EMAIL,
            "userRole": ROLE,
            "patientId": _string(36),
            "dataType": _string(100),
            "accessType": {"type": "string", "enum": ["read", "write", "delete", "export"]},
        },
        optional={
            "sensitivityLevel": {"type": "string", "enum": ["low", "medium", "high", "phi"]},
            "patientMrn": _string(50),
            "fieldsAccessed": {"type": "array", "items": {"type": "string"}},
            "ipAddress": _string(45),
            "userAgent": {"type": "string"},
            "isEmergencyAccess": {"type": "boolean"},
            "breakGlassReason": {"type": "string"},
        }
    ),
}

# Pre-compiled once; schemas are static
_validators = {key: Draft7Validator(schema) for key, schema in PAYLOAD_SCHEMAS.items()}


def validate_payload(routing_key: str, payload: Mapping[str, Any]) -> None:
    """
    Check a payload against the schema registered for its routing key.

    Raises:
        EnvelopeValidationError: If the payload does not match, or no schema
            is registered for the routing key
    """
    validator = _validators.get(routing_key)
    if validator is None:
        raise EnvelopeValidationError(f"No payload schema for {routing_key}")

    # jsonschema only treats real dicts as objects
    errors = sorted(validator.iter_errors(dict(payload)), key=lambda e: [str(part) for part in e.path])
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.path) or "payload"
        raise EnvelopeValidationError(f"Invalid {routing_key} payload at {location}: {first.message}")
