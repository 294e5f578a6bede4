"""
Broker topology shared by every service.

Exchanges, routing keys and the queue naming convention live here so that
publishers and consumers in different services agree on them.
"""

from enum import Enum


class Exchanges:
    """Well-known exchange names"""

    EVENTS = "clinical.events"
    AUDIT = "clinical.audit"
    DLX = "clinical.dlx"


class ExchangeKind(str, Enum):
    """AMQP exchange types used by the portal"""

    TOPIC = "topic"
    DIRECT = "direct"


# exchange name -> kind; all of them are declared durable
EXCHANGE_KINDS = {
    Exchanges.EVENTS: ExchangeKind.TOPIC,
    Exchanges.AUDIT: ExchangeKind.DIRECT,
    Exchanges.DLX: ExchangeKind.DIRECT,
}


class EventRoutingKeys:
    """Routing keys follow <entity>.<verb>"""

    # User events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DEACTIVATED = "user.deactivated"
    USER_ACTIVATED = "user.activated"
    USER_ROLE_CHANGED = "user.role.changed"

    # Audit events
    AUDIT_LOG = "audit.log"
    AUDIT_DATA_ACCESS = "audit.data-access"


ENVELOPE_VERSION = "1.0"


def exchange_for_routing_key(routing_key: str) -> str:
    """Audit traffic goes to the direct audit exchange, everything else to the topic exchange."""
    if routing_key.startswith("audit."):
        return Exchanges.AUDIT
    return Exchanges.EVENTS


def queue_name(service_name: str, routing_key: str) -> str:
    """Queue naming convention: <consuming-service>.<entity>.<verb>"""
    return f"{service_name}.{routing_key}"


def dead_letter_routing_key(service_name: str) -> str:
    """Routing key used when a service's queues dead-letter a message."""
    return f"{service_name}.dead"


def dead_letter_queue_name(service_name: str) -> str:
    """Parking queue holding a service's dead-lettered messages."""
    return f"{service_name}.dead-letter"
