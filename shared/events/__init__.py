"""
Shared messaging library: event envelopes, broker topology, a reconnecting
publisher, an idempotent-handler consumer and the audit emitter.
"""

from .audit import AccessType, AuditContext, AuditEmitter, AuditOutcome, SensitivityLevel
from .config import EventConfig, get_event_config
from .connection import BrokerConnection, ConnectionState
from .consumer import EventConsumer, EventHandler, QueueBinding
from .envelope import EventEnvelope
from .exceptions import EnvelopeValidationError, EventError, ProcessingError, PublishFailed
from .publisher import EventPublisher
from .topology import EventRoutingKeys, Exchanges, queue_name

__all__ = [
    "AccessType",
    "AuditContext",
    "AuditEmitter",
    "AuditOutcome",
    "SensitivityLevel",
    "EventConfig",
    "get_event_config",
    "BrokerConnection",
    "ConnectionState",
    "EventConsumer",
    "EventHandler",
    "QueueBinding",
    "EventEnvelope",
    "EnvelopeValidationError",
    "EventError",
    "ProcessingError",
    "PublishFailed",
    "EventPublisher",
    "EventRoutingKeys",
    "Exchanges",
    "queue_name",
]
