"""
Event publisher for inter-service communication.

Publishing is fire-and-forget: a failure is logged and reported as False,
never raised, so a broker outage cannot abort the caller's business
transaction. Events published while disconnected are dropped.
"""

from typing import Any, Dict, Mapping, Optional, Union

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange
import structlog

from .connection import BrokerConnection
from .envelope import EventEnvelope
from .exceptions import PublishFailed
from .payloads import (
    AuditLogPayload,
    DataAccessLogPayload,
    EventPayload,
    UserActivatedPayload,
    UserCreatedPayload,
    UserDeactivatedPayload,
    UserRoleChangedPayload,
    UserUpdatedPayload,
)
from .topology import EXCHANGE_KINDS, EventRoutingKeys, Exchanges, exchange_for_routing_key

logger = structlog.get_logger()

Payload = Union[EventPayload, Mapping[str, Any]]


class EventPublisher:
    """
    Publishes event envelopes to the clinical exchanges.

    Usage:
        connection = BrokerConnection(url, name="auth-service-publisher")
        publisher = EventPublisher(connection, service_name="auth-service")
        await connection.start()
        await publisher.publish_user_created(UserCreatedPayload(...))
    """

    PUBLISHED_EXCHANGES = (Exchanges.EVENTS, Exchanges.AUDIT)

    def __init__(self, connection: BrokerConnection, service_name: str):
        self.connection = connection
        self.service_name = service_name
        self._exchanges: Dict[str, AbstractExchange] = {}
        connection.add_setup_callback(self._declare_exchanges)

    async def _declare_exchanges(self, channel: AbstractChannel) -> None:
        """Idempotently declare the exchanges this publisher writes to."""
        exchanges = {}
        for name in self.PUBLISHED_EXCHANGES:
            exchanges[name] = await channel.declare_exchange(
                name,
                aio_pika.ExchangeType(EXCHANGE_KINDS[name].value),
                durable=True
            )
        self._exchanges = exchanges

    def is_healthy(self) -> bool:
        return self.connection.is_connected

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        payload: Payload,
        correlation_id: Optional[str] = None
    ) -> bool:
        """
        Wrap payload in a fresh envelope and publish it.

        Args:
            exchange: Target exchange name
            routing_key: Routing key, also used as the envelope event type
            payload: Typed payload or plain mapping
            correlation_id: Propagated correlation id (generated when omitted)

        Returns:
            True if the message was handed to the broker
        """
        if isinstance(payload, EventPayload):
            payload = payload.to_dict()

        envelope = EventEnvelope.create(
            event_type=routing_key,
            source=self.service_name,
            payload=payload,
            correlation_id=correlation_id
        )
        return await self.publish_envelope(exchange, envelope)

    async def publish_envelope(self, exchange: str, envelope: EventEnvelope) -> bool:
        """Publish an already constructed envelope under its event type."""
        if not self.connection.is_connected:
            logger.warning(
                "Cannot publish event: not connected to broker",
                event_type=envelope.event_type,
                event_id=envelope.event_id
            )
            return False

        target = self._exchanges.get(exchange)
        if target is None:
            logger.error(
                "Cannot publish event: exchange not declared",
                exchange=exchange,
                event_type=envelope.event_type
            )
            return False

        try:
            await target.publish(self._build_message(envelope), routing_key=envelope.event_type)
        except Exception as e:
            failure = PublishFailed(envelope.event_type, str(e))
            logger.error(
                "Failed to publish event",
                exchange=exchange,
                event_type=envelope.event_type,
                event_id=envelope.event_id,
                error=str(failure)
            )
            return False

        logger.debug(
            "Published event",
            exchange=exchange,
            event_type=envelope.event_type,
            event_id=envelope.event_id,
            correlation_id=envelope.correlation_id
        )
        return True

    def _build_message(self, envelope: EventEnvelope) -> aio_pika.Message:
        return aio_pika.Message(
            body=envelope.to_bytes(),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=envelope.event_id,
            correlation_id=envelope.correlation_id,
            timestamp=envelope.timestamp,
            headers={
                "source": self.service_name,
                "eventType": envelope.event_type,
            }
        )

    # User events

    async def publish_user_created(
        self, payload: UserCreatedPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.EVENTS, EventRoutingKeys.USER_CREATED, payload, correlation_id
        )

    async def publish_user_updated(
        self, payload: UserUpdatedPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.EVENTS, EventRoutingKeys.USER_UPDATED, payload, correlation_id
        )

    async def publish_user_activated(
        self, payload: UserActivatedPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.EVENTS, EventRoutingKeys.USER_ACTIVATED, payload, correlation_id
        )

    async def publish_user_deactivated(
        self, payload: UserDeactivatedPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.EVENTS, EventRoutingKeys.USER_DEACTIVATED, payload, correlation_id
        )

    async def publish_user_role_changed(
        self, payload: UserRoleChangedPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.EVENTS, EventRoutingKeys.USER_ROLE_CHANGED, payload, correlation_id
        )

    # Audit events

    async def publish_audit_log(
        self, payload: AuditLogPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.AUDIT, EventRoutingKeys.AUDIT_LOG, payload, correlation_id
        )

    async def publish_data_access_log(
        self, payload: DataAccessLogPayload, correlation_id: Optional[str] = None
    ) -> bool:
        return await self.publish(
            Exchanges.AUDIT, EventRoutingKeys.AUDIT_DATA_ACCESS, payload, correlation_id
        )

    async def publish_event(
        self, routing_key: str, payload: Payload, correlation_id: Optional[str] = None
    ) -> bool:
        """Publish to whichever exchange the routing key belongs to."""
        return await self.publish(
            exchange_for_routing_key(routing_key), routing_key, payload, correlation_id
        )
