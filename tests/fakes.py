"""
In-process stand-in for an AMQP broker.

Implements the slice of the aio-pika connection/channel/exchange/queue API
that BrokerConnection, EventPublisher and EventConsumer use, with topic and
direct routing, dead-lettering and x-delivery-count on redelivery. Deliveries
are queued and processed explicitly with FakeBroker.drain().
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple


class FakeCallbackCollection:
    """Minimal aio-pika CallbackCollection: add() and fire()."""

    def __init__(self, sender: Any):
        self.sender = sender
        self._callbacks: List[Callable] = []

    def add(self, callback: Callable) -> None:
        self._callbacks.append(callback)

    def discard(self, callback: Callable) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def fire(self, exc: Optional[BaseException] = None) -> None:
        for callback in list(self._callbacks):
            callback(self.sender, exc)

    def __len__(self) -> int:
        return len(self._callbacks)


@dataclass
class QueueState:
    name: str
    durable: bool
    arguments: Dict[str, Any]
    bindings: List[Tuple[str, str]] = field(default_factory=list)
    consumer: Optional[Callable[[Any], Awaitable[None]]] = None
    ready: Deque["FakeIncomingMessage"] = field(default_factory=deque)


@dataclass
class PublishedMessage:
    exchange: str
    routing_key: str
    message: Any


class FakeIncomingMessage:
    def __init__(
        self,
        broker: "FakeBroker",
        queue: str,
        routing_key: str,
        body: bytes,
        headers: Dict[str, Any],
        message_id: Optional[str],
        correlation_id: Optional[str],
        delivery_count: int = 0
    ):
        self.broker = broker
        self.queue = queue
        self.routing_key = routing_key
        self.body = body
        self.headers = dict(headers)
        if delivery_count:
            self.headers["x-delivery-count"] = delivery_count
        self.message_id = message_id
        self.correlation_id = correlation_id
        self.delivery_count = delivery_count
        self.outcome: Optional[str] = None
        self.requeued: Optional[bool] = None

    async def ack(self) -> None:
        self._settle("ack")

    async def nack(self, requeue: bool = True) -> None:
        self._settle("nack", requeue)
        if requeue:
            self.broker._redeliver(self)
        else:
            self.broker._dead_letter(self)

    async def reject(self, requeue: bool = False) -> None:
        self._settle("reject", requeue)
        if requeue:
            self.broker._redeliver(self)
        else:
            self.broker._dead_letter(self)

    def _settle(self, outcome: str, requeue: Optional[bool] = None) -> None:
        if self.outcome is not None:
            raise RuntimeError(f"Message already settled with {self.outcome}")
        if self.broker.fail_settle:
            raise ConnectionError("channel closed")
        self.outcome = outcome
        self.requeued = requeue


class FakeExchange:
    def __init__(self, broker: "FakeBroker", name: str, kind: str):
        self.broker = broker
        self.name = name
        self.kind = kind

    async def publish(self, message: Any, routing_key: str, **kwargs: Any) -> None:
        if self.broker.fail_publish:
            raise ConnectionError("publish failed")
        self.broker.published.append(PublishedMessage(self.name, routing_key, message))
        self.broker._route(
            self.name,
            routing_key,
            body=message.body,
            headers=dict(message.headers or {}),
            message_id=message.message_id,
            correlation_id=message.correlation_id
        )


class FakeQueue:
    def __init__(self, broker: "FakeBroker", state: QueueState):
        self.broker = broker
        self.state = state
        self.name = state.name

    async def bind(self, exchange: FakeExchange, routing_key: str, **kwargs: Any) -> None:
        binding = (exchange.name, routing_key)
        if binding not in self.state.bindings:
            self.state.bindings.append(binding)

    async def consume(self, callback: Callable[[Any], Awaitable[None]], **kwargs: Any) -> str:
        self.state.consumer = callback
        return f"ctag-{self.name}"


class FakeChannel:
    def __init__(self, broker: "FakeBroker", connection: "FakeConnection", publisher_confirms: bool):
        self.broker = broker
        self.connection = connection
        self.publisher_confirms = publisher_confirms
        self.close_callbacks = FakeCallbackCollection(self)
        self.is_closed = False
        self.prefetch_count: Optional[int] = None

    async def set_qos(self, prefetch_count: int = 0, **kwargs: Any) -> None:
        self.prefetch_count = prefetch_count

    async def declare_exchange(self, name: str, type: Any = "direct", durable: bool = False, **kwargs: Any) -> FakeExchange:
        kind = getattr(type, "value", type)
        existing = self.broker.exchanges.get(name)
        if existing is not None and existing["type"] != kind:
            raise ValueError(f"PRECONDITION_FAILED: exchange {name} redeclared as {kind}")
        self.broker.exchanges[name] = {"type": kind, "durable": durable}
        return FakeExchange(self.broker, name, kind)

    async def declare_queue(self, name: str, durable: bool = False, arguments: Optional[Dict[str, Any]] = None, **kwargs: Any) -> FakeQueue:
        state = self.broker.queues.get(name)
        if state is None:
            state = QueueState(name=name, durable=durable, arguments=dict(arguments or {}))
            self.broker.queues[name] = state
        return FakeQueue(self.broker, state)

    async def close(self) -> None:
        self.is_closed = True

    def simulate_close(self, exc: Optional[BaseException] = None) -> None:
        """Broker-initiated channel close."""
        self.is_closed = True
        self.close_callbacks.fire(exc)


class FakeConnection:
    def __init__(self, broker: "FakeBroker", url: str):
        self.broker = broker
        self.url = url
        self.close_callbacks = FakeCallbackCollection(self)
        self.is_closed = False
        self.channels: List[FakeChannel] = []

    async def channel(self, publisher_confirms: bool = True, **kwargs: Any) -> FakeChannel:
        if self.is_closed:
            raise ConnectionError("connection is closed")
        channel = FakeChannel(self.broker, self, publisher_confirms)
        self.channels.append(channel)
        return channel

    async def close(self, exc: Optional[BaseException] = None) -> None:
        if self.is_closed:
            return
        self.is_closed = True
        for channel in self.channels:
            channel.is_closed = True

    def simulate_drop(self, exc: Optional[BaseException] = None) -> None:
        """Broker-initiated connection loss."""
        self.is_closed = True
        for channel in self.channels:
            channel.is_closed = True
        self.close_callbacks.fire(exc or ConnectionResetError("connection reset by peer"))


class FakeBroker:
    def __init__(self):
        self.exchanges: Dict[str, Dict[str, Any]] = {}
        self.queues: Dict[str, QueueState] = {}
        self.published: List[PublishedMessage] = []
        self.connections: List[FakeConnection] = []
        self.connect_attempts = 0
        self.available = True
        self.fail_publish = False
        self.fail_settle = False
        self.unroutable: List[Tuple[str, str]] = []
        self.deliveries: List[FakeIncomingMessage] = []

    async def connect(self, url: str, **kwargs: Any) -> FakeConnection:
        self.connect_attempts += 1
        if not self.available:
            raise ConnectionRefusedError(f"cannot connect to {url}")
        connection = FakeConnection(self, url)
        self.connections.append(connection)
        return connection

    @property
    def last_connection(self) -> Optional[FakeConnection]:
        return self.connections[-1] if self.connections else None

    def published_to(self, exchange: str, routing_key: Optional[str] = None) -> List[PublishedMessage]:
        return [
            p for p in self.published
            if p.exchange == exchange and (routing_key is None or p.routing_key == routing_key)
        ]

    def inject(
        self,
        queue: str,
        body: bytes,
        headers: Optional[Dict[str, Any]] = None,
        message_id: Optional[str] = None,
        routing_key: str = ""
    ) -> None:
        """Deliver a raw body straight into a queue."""
        self._enqueue(queue, routing_key, body, headers or {}, message_id, None, 0)

    async def drain(self, max_deliveries: int = 100) -> int:
        """Hand ready messages to consumers until none are left; returns the delivery count."""
        delivered = 0
        progress = True
        while progress and delivered < max_deliveries:
            progress = False
            for state in self.queues.values():
                if state.consumer is None or not state.ready:
                    continue
                message = state.ready.popleft()
                self.deliveries.append(message)
                await state.consumer(message)
                delivered += 1
                progress = True
                if delivered >= max_deliveries:
                    break
        return delivered

    def _matches(self, exchange: str, pattern: str, routing_key: str) -> bool:
        kind = self.exchanges.get(exchange, {}).get("type", "direct")
        if kind == "topic":
            return topic_matches(pattern, routing_key)
        return pattern == routing_key

    def _route(self, exchange, routing_key, body, headers, message_id, correlation_id, delivery_count=0) -> None:
        targets = [
            state.name for state in self.queues.values()
            if any(ex == exchange and self._matches(ex, key, routing_key) for ex, key in state.bindings)
        ]
        if not targets:
            self.unroutable.append((exchange, routing_key))
        for name in targets:
            self._enqueue(name, routing_key, body, headers, message_id, correlation_id, delivery_count)

    def _enqueue(self, queue, routing_key, body, headers, message_id, correlation_id, delivery_count) -> None:
        state = self.queues[queue]
        state.ready.append(
            FakeIncomingMessage(
                self, queue, routing_key, body, headers, message_id, correlation_id, delivery_count
            )
        )

    def _redeliver(self, message: FakeIncomingMessage) -> None:
        headers = {k: v for k, v in message.headers.items() if k != "x-delivery-count"}
        self._enqueue(
            message.queue,
            message.routing_key,
            message.body,
            headers,
            message.message_id,
            message.correlation_id,
            message.delivery_count + 1
        )

    def _dead_letter(self, message: FakeIncomingMessage) -> None:
        arguments = self.queues[message.queue].arguments
        dlx = arguments.get("x-dead-letter-exchange")
        if not dlx:
            return
        routing_key = arguments.get("x-dead-letter-routing-key", message.routing_key)
        headers = {k: v for k, v in message.headers.items() if k != "x-delivery-count"}
        headers["x-first-death-queue"] = message.queue
        self._route(dlx, routing_key, message.body, headers, message.message_id, message.correlation_id)


def topic_matches(pattern: str, routing_key: str) -> bool:
    """AMQP topic matching: '*' matches exactly one word, '#' zero or more."""
    pattern_words = pattern.split(".")
    key_words = routing_key.split(".")

    def _match(p: int, k: int) -> bool:
        if p == len(pattern_words):
            return k == len(key_words)
        word = pattern_words[p]
        if word == "#":
            return any(_match(p + 1, i) for i in range(k, len(key_words) + 1))
        if k == len(key_words):
            return False
        if word == "*" or word == key_words[k]:
            return _match(p + 1, k + 1)
        return False

    return _match(0, 0)
