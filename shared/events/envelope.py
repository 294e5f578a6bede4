"""
Event envelope: the sole unit of cross-service communication.
Provides construction, JSON wire serialization and inbound validation.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from jsonschema import Draft7Validator

from .exceptions import EnvelopeValidationError
from .topology import ENVELOPE_VERSION


ENVELOPE_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["eventId", "eventType", "timestamp", "source", "version", "payload"],
    "properties": {
        "eventId": {"type": "string", "minLength": 1, "maxLength": 64},
        "eventType": {
            "type": "string",
            "pattern": "^[a-zA-Z0-9._-]+$",
            "maxLength": 255
        },
        "timestamp": {"type": "string", "minLength": 1},
        "correlationId": {"type": ["string", "null"], "maxLength": 128},
        "source": {"type": "string", "minLength": 1, "maxLength": 128},
        "version": {"type": "string", "minLength": 1},
        "payload": {"type": "object"}
    }
}

_validator = Draft7Validator(ENVELOPE_SCHEMA)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, MappingProxyType):
        return dict(value)
    return str(value)


@dataclass(frozen=True)
class EventEnvelope:
    """Immutable event envelope as it travels over the broker"""

    event_type: str
    source: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=_utc_now)
    correlation_id: str = field(default_factory=lambda: str(uuid4()))
    version: str = ENVELOPE_VERSION

    def __post_init__(self):
        # freeze the payload so a constructed envelope cannot be mutated
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @classmethod
    def create(
        cls,
        event_type: str,
        source: str,
        payload: Mapping[str, Any],
        correlation_id: Optional[str] = None
    ) -> "EventEnvelope":
        """Build a fresh envelope, generating a correlation id when none is propagated"""
        return cls(
            event_type=event_type,
            source=source,
            payload=payload,
            correlation_id=correlation_id or str(uuid4()),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase keys)"""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "correlationId": self.correlation_id,
            "source": self.source,
            "version": self.version,
            "payload": dict(self.payload),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=_json_default)

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventEnvelope":
        """
        Validate and build an envelope from its wire representation.

        Raises:
            EnvelopeValidationError: if the data does not match the envelope schema
        """
        errors = sorted(_validator.iter_errors(data), key=lambda e: list(e.path))
        if errors:
            first = errors[0]
            location = ".".join(str(p) for p in first.path) or "<root>"
            raise EnvelopeValidationError(f"Invalid envelope at {location}: {first.message}")

        try:
            timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        except ValueError as e:
            raise EnvelopeValidationError(f"Invalid envelope timestamp: {e}") from e

        return cls(
            event_id=data["eventId"],
            event_type=data["eventType"],
            timestamp=timestamp,
            correlation_id=data.get("correlationId") or str(uuid4()),
            source=data["source"],
            version=data["version"],
            payload=data["payload"],
        )

    @classmethod
    def from_json(cls, raw: bytes | str) -> "EventEnvelope":
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise EnvelopeValidationError("Envelope body is not UTF-8") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EnvelopeValidationError(f"Envelope body is not JSON: {e.msg}") from e
        return cls.from_dict(data)

    def __str__(self) -> str:
        return f"{self.event_type}(event_id={self.event_id}, correlation_id={self.correlation_id})"
