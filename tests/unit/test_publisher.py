"""
Tests for the broker connection state machine and the event publisher.
"""
import json

import aio_pika
import pytest

from shared.events import ConnectionState, EventPublisher, EventRoutingKeys, Exchanges
from shared.events.payloads import UserCreatedPayload, UserUpdatedPayload


def _user_created() -> UserCreatedPayload:
    return UserCreatedPayload(
        user_id="u-1",
        email="doctor@example.com",
        first_name="Jane",
        last_name="Smith",
        role="doctor"
    )


class TestBrokerConnection:
    """Test cases for BrokerConnection."""

    @pytest.mark.asyncio
    async def test_start_connects(self, broker, connections):
        connection = connections()

        connected = await connection.start()

        assert connected is True
        assert connection.state is ConnectionState.CONNECTED
        assert connection.is_connected
        assert broker.connect_attempts == 1

    @pytest.mark.asyncio
    async def test_start_runs_setup_callbacks(self, connections):
        connection = connections()
        seen = []

        async def setup(channel):
            seen.append(channel)

        connection.add_setup_callback(setup)
        await connection.start()

        assert seen == [connection.channel]

    @pytest.mark.asyncio
    async def test_start_never_raises_when_broker_is_down(self, broker, connections):
        broker.available = False
        connection = connections()

        connected = await connection.start()

        assert connected is False
        assert connection.state is not ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_attempts_are_bounded(self, broker, connections):
        # Arrange
        broker.available = False
        connection = connections(max_reconnect_attempts=3)

        # Act
        await connection.start()
        state = await connection.wait_for_reconnect()

        # Assert
        assert state is ConnectionState.DISCONNECTED
        assert connection.reconnect_exhausted
        assert connection.reconnect_attempts == 3
        assert broker.connect_attempts == 4  # first attempt + 3 reconnects

    @pytest.mark.asyncio
    async def test_reconnects_after_connection_drop(self, broker, connections):
        connection = connections()
        await connection.start()

        broker.last_connection.simulate_drop()

        assert connection.state is ConnectionState.DISCONNECTED
        state = await connection.wait_for_reconnect()
        assert state is ConnectionState.CONNECTED
        assert len(broker.connections) == 2
        assert connection.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_reconnects_after_channel_close(self, broker, connections):
        connection = connections()
        await connection.start()
        first = broker.last_connection

        connection.channel.simulate_close(RuntimeError("channel error"))
        state = await connection.wait_for_reconnect()

        assert state is ConnectionState.CONNECTED
        assert first.is_closed
        assert broker.last_connection is not first

    @pytest.mark.asyncio
    async def test_close_finishes_dropping_failed_connection(self, broker, connections):
        connection = connections()
        await connection.start()
        first = broker.last_connection

        connection.channel.simulate_close(RuntimeError("channel error"))
        await connection.close()

        assert first.is_closed
        assert connection.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_recovers_once_broker_returns(self, broker, connections):
        broker.available = False

        async def flaky_connect(url, **kwargs):
            # broker comes back on the second reconnect attempt
            if broker.connect_attempts >= 2:
                broker.available = True
            return await broker.connect(url, **kwargs)

        connection = connections(max_reconnect_attempts=5, connector=flaky_connect)
        await connection.start()
        state = await connection.wait_for_reconnect()

        assert state is ConnectionState.CONNECTED
        assert broker.connect_attempts == 3
        assert connection.reconnect_attempts == 0

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(self, broker, connections):
        broker.available = False
        connection = connections(reconnect_delay=60)
        await connection.start()

        await connection.close()

        assert connection.state is ConnectionState.DISCONNECTED
        assert broker.connect_attempts == 1
        assert await connection.wait_for_reconnect() is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_does_not_trigger_reconnect(self, broker, connections):
        connection = connections()
        await connection.start()

        await connection.close()
        broker.last_connection.simulate_drop()

        assert connection.state is ConnectionState.DISCONNECTED
        assert len(broker.connections) == 1


class TestEventPublisher:
    """Test cases for EventPublisher."""

    @pytest.mark.asyncio
    async def test_declares_durable_exchanges(self, broker, publisher):
        assert broker.exchanges[Exchanges.EVENTS] == {"type": "topic", "durable": True}
        assert broker.exchanges[Exchanges.AUDIT] == {"type": "direct", "durable": True}

    @pytest.mark.asyncio
    async def test_publish_user_created(self, broker, publisher):
        # Act
        published = await publisher.publish_user_created(_user_created(), correlation_id="corr-1")

        # Assert
        assert published is True
        messages = broker.published_to(Exchanges.EVENTS, EventRoutingKeys.USER_CREATED)
        assert len(messages) == 1

        message = messages[0].message
        body = json.loads(message.body)
        assert body["eventType"] == "user.created"
        assert body["source"] == "auth-service"
        assert body["correlationId"] == "corr-1"
        assert body["payload"]["userId"] == "u-1"
        assert body["payload"]["firstName"] == "Jane"

        assert message.message_id == body["eventId"]
        assert message.correlation_id == "corr-1"
        assert message.content_type == "application/json"
        assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
        assert message.headers["eventType"] == "user.created"
        assert message.headers["source"] == "auth-service"

    @pytest.mark.asyncio
    async def test_publish_user_updated_uses_events_exchange(self, broker, publisher):
        sent = await publisher.publish_user_updated(
            UserUpdatedPayload(user_id="u-1", changes={"lastName": {"old": "Smith", "new": "Jones"}}),
            correlation_id="corr-2"
        )

        assert sent is True
        published = broker.published_to(Exchanges.EVENTS, EventRoutingKeys.USER_UPDATED)
        body = json.loads(published[0].message.body)
        assert body["correlationId"] == "corr-2"
        assert body["payload"]["changes"] == {"lastName": {"old": "Smith", "new": "Jones"}}

    @pytest.mark.asyncio
    async def test_publish_event_routes_audit_keys_to_audit_exchange(self, broker, publisher):
        await publisher.publish_event(EventRoutingKeys.AUDIT_LOG, {"action": "user.login"})

        assert len(broker.published_to(Exchanges.AUDIT, EventRoutingKeys.AUDIT_LOG)) == 1
        assert broker.published_to(Exchanges.EVENTS) == []

    @pytest.mark.asyncio
    async def test_publish_while_disconnected_returns_false(self, broker, connections):
        broker.available = False
        connection = connections(max_reconnect_attempts=0)
        event_publisher = EventPublisher(connection, service_name="auth-service")
        await connection.start()

        published = await event_publisher.publish_user_created(_user_created())

        assert published is False
        assert broker.published == []

    @pytest.mark.asyncio
    async def test_publish_failure_returns_false(self, broker, publisher):
        broker.fail_publish = True

        published = await publisher.publish_user_created(_user_created())

        assert published is False

    @pytest.mark.asyncio
    async def test_publishes_again_after_reconnect(self, broker, publisher):
        # Arrange
        broker.last_connection.simulate_drop()

        # Act
        dropped = await publisher.publish_user_created(_user_created())
        await publisher.connection.wait_for_reconnect()
        delivered = await publisher.publish_user_created(_user_created())

        # Assert
        assert dropped is False
        assert delivered is True
        assert publisher.is_healthy()
        assert len(broker.published) == 1

    @pytest.mark.asyncio
    async def test_publish_returns_false_once_reconnects_exhausted(self, broker, connections):
        broker.available = False
        connection = connections(max_reconnect_attempts=2)
        event_publisher = EventPublisher(connection, service_name="auth-service")

        await connection.start()
        await connection.wait_for_reconnect()

        assert connection.reconnect_exhausted
        assert await event_publisher.publish_user_created(_user_created()) is False
