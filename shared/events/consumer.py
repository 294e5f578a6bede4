"""
Event consumer with durable queues, dead-lettering and bounded prefetch.

Delivery is at-least-once, so every handler must be idempotent: the same
envelope may arrive more than once and must leave the same local state.
"""

from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractIncomingMessage
import structlog

from .connection import BrokerConnection
from .envelope import EventEnvelope
from .exceptions import EnvelopeValidationError, ProcessingError
from .topology import (
    EXCHANGE_KINDS,
    Exchanges,
    dead_letter_queue_name,
    dead_letter_routing_key,
    queue_name,
)

logger = structlog.get_logger()

EventHandler = Callable[[EventEnvelope], Awaitable[None]]


@dataclass
class QueueBinding:
    """A durable queue bound to one routing key and drained by one handler"""

    routing_key: str
    handler: EventHandler
    exchange: str
    queue: str


class EventConsumer:
    """
    Consumes envelopes for one service.

    Register bindings with subscribe() before starting the connection; the
    topology is (re)declared and consumers (re)attached after every connect.
    """

    def __init__(
        self,
        connection: BrokerConnection,
        service_name: str,
        prefetch_count: int = 10,
        max_redeliveries: Optional[int] = None
    ):
        self.connection = connection
        self.service_name = service_name
        self.prefetch_count = prefetch_count
        self.max_redeliveries = max_redeliveries
        self._bindings: List[QueueBinding] = []
        connection.add_setup_callback(self._setup)

    @property
    def bindings(self) -> List[QueueBinding]:
        return list(self._bindings)

    def is_healthy(self) -> bool:
        return self.connection.is_connected

    def subscribe(
        self,
        routing_key: str,
        handler: EventHandler,
        exchange: str = Exchanges.EVENTS,
        queue: Optional[str] = None
    ) -> QueueBinding:
        """
        Bind a handler to a routing key.

        Args:
            routing_key: Routing key to bind the queue with
            handler: Idempotent async handler receiving the parsed envelope
            exchange: Exchange the queue is bound to
            queue: Queue name override (defaults to <service>.<routing key>)

        Returns:
            The registered binding
        """
        if self.connection.is_connected:
            raise RuntimeError("Register subscriptions before the broker connection is started")

        binding = QueueBinding(
            routing_key=routing_key,
            handler=handler,
            exchange=exchange,
            queue=queue or queue_name(self.service_name, routing_key)
        )
        self._bindings.append(binding)

        logger.info(
            "Handler subscribed to routing key",
            queue=binding.queue,
            routing_key=routing_key,
            handler=getattr(handler, "__name__", type(handler).__name__)
        )
        return binding

    async def _setup(self, channel: AbstractChannel) -> None:
        await channel.set_qos(prefetch_count=self.prefetch_count)

        dead_letter_key = dead_letter_routing_key(self.service_name)
        dlx = await channel.declare_exchange(
            Exchanges.DLX, aio_pika.ExchangeType.DIRECT, durable=True
        )
        parking_queue = await channel.declare_queue(
            dead_letter_queue_name(self.service_name), durable=True
        )
        await parking_queue.bind(dlx, routing_key=dead_letter_key)

        exchanges: Dict[str, AbstractExchange] = {}
        for binding in self._bindings:
            if binding.exchange not in exchanges:
                exchanges[binding.exchange] = await channel.declare_exchange(
                    binding.exchange,
                    aio_pika.ExchangeType(EXCHANGE_KINDS[binding.exchange].value),
                    durable=True
                )

            queue = await channel.declare_queue(
                binding.queue,
                durable=True,
                arguments={
                    "x-dead-letter-exchange": Exchanges.DLX,
                    "x-dead-letter-routing-key": dead_letter_key,
                }
            )
            await queue.bind(exchanges[binding.exchange], routing_key=binding.routing_key)
            await queue.consume(partial(self._on_message, binding))

        logger.info(
            "Consuming events",
            service=self.service_name,
            queues=[binding.queue for binding in self._bindings],
            prefetch=self.prefetch_count
        )

    async def _on_message(self, binding: QueueBinding, message: AbstractIncomingMessage) -> None:
        try:
            envelope = EventEnvelope.from_json(message.body)
        except EnvelopeValidationError as e:
            # retrying cannot fix a malformed body; park it in the dead-letter queue
            logger.error(
                "Discarding malformed event envelope",
                queue=binding.queue,
                message_id=message.message_id,
                error=str(e)
            )
            await self._settle(message, "reject", requeue=False)
            return

        if self._redeliveries_exhausted(message):
            logger.error(
                "Event exceeded redelivery limit, dead-lettering",
                queue=binding.queue,
                event_type=envelope.event_type,
                event_id=envelope.event_id,
                max_redeliveries=self.max_redeliveries
            )
            await self._settle(message, "reject", requeue=False)
            return

        logger.debug(
            "Received event",
            queue=binding.queue,
            event_type=envelope.event_type,
            event_id=envelope.event_id,
            correlation_id=envelope.correlation_id
        )

        try:
            await binding.handler(envelope)
        except EnvelopeValidationError as e:
            logger.error(
                "Discarding event with invalid payload",
                queue=binding.queue,
                event_type=envelope.event_type,
                event_id=envelope.event_id,
                error=str(e)
            )
            await self._settle(message, "reject", requeue=False)
            return
        except Exception as e:
            error = ProcessingError(f"{binding.routing_key} handler failed: {e}")
            logger.error(
                "Error processing event, requeueing",
                queue=binding.queue,
                event_type=envelope.event_type,
                event_id=envelope.event_id,
                error=str(error)
            )
            await self._settle(message, "nack", requeue=True)
            return

        await self._settle(message, "ack")

    def _redeliveries_exhausted(self, message: AbstractIncomingMessage) -> bool:
        if self.max_redeliveries is None:
            return False
        headers = message.headers or {}
        try:
            delivery_count = int(headers.get("x-delivery-count", 0))
        except (TypeError, ValueError):
            return False
        return delivery_count >= self.max_redeliveries

    async def _settle(self, message: AbstractIncomingMessage, action: str, **kwargs) -> None:
        """Ack/nack/reject without letting a dead channel crash the consumer."""
        try:
            await getattr(message, action)(**kwargs)
        except Exception as e:
            logger.error(
                "Failed to settle message",
                action=action,
                message_id=message.message_id,
                error=str(e)
            )
