"""
Broker connection manager.

Owns a single long-lived AMQP connection and channel with an explicit state
machine (DISCONNECTED -> CONNECTING -> CONNECTED). Losing the connection or
channel moves it back to DISCONNECTED and wakes a background reconnect task
that retries on a fixed delay until it runs out of attempts.

Publishers and consumers register setup callbacks that run against the fresh
channel after every successful (re)connect, which is where they (re)declare
exchanges, queues and consumers.
"""

import asyncio
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Set

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection
import structlog

logger = structlog.get_logger()

SetupCallback = Callable[[AbstractChannel], Awaitable[None]]
Connector = Callable[[str], Awaitable[AbstractConnection]]


class ConnectionState(str, Enum):
    """Lifecycle states of a broker connection"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class BrokerConnection:
    """Connection manager with a bounded, fixed-delay reconnect policy."""

    def __init__(
        self,
        url: str,
        name: str = "broker",
        reconnect_delay: float = 5.0,
        max_reconnect_attempts: int = 10,
        publisher_confirms: bool = False,
        connector: Optional[Connector] = None
    ):
        self.url = url
        self.name = name
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.publisher_confirms = publisher_confirms
        self._connector = connector or aio_pika.connect

        self._state = ConnectionState.DISCONNECTED
        self._connection: Optional[AbstractConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._setup_callbacks: List[SetupCallback] = []
        self._reconnect_attempts = 0
        self._reconnect_task: Optional[asyncio.Task] = None
        self._pending_closes: Set[asyncio.Task] = set()
        self._generation = 0
        self._closing = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._channel is not None

    @property
    def channel(self) -> Optional[AbstractChannel]:
        return self._channel

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_exhausted(self) -> bool:
        return (
            self._state is ConnectionState.DISCONNECTED
            and self._reconnect_attempts >= self.max_reconnect_attempts
        )

    def add_setup_callback(self, callback: SetupCallback) -> None:
        """Run callback against the channel after every successful connect."""
        self._setup_callbacks.append(callback)

    async def start(self) -> bool:
        """
        Connect for the first time.

        Never raises: a failed first attempt schedules reconnects in the
        background and the service keeps running without the broker.

        Returns:
            True if the connection is established
        """
        self._closing = False
        if self.is_connected:
            return True

        connected = await self._try_connect()
        if not connected:
            self._schedule_reconnect()
        return connected

    async def close(self) -> None:
        """Stop reconnecting and close the connection."""
        self._closing = True

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None

        if self._pending_closes:
            await asyncio.gather(*self._pending_closes, return_exceptions=True)

        connection = self._connection
        self._connection = None
        self._channel = None
        self._set_state(ConnectionState.DISCONNECTED)

        if connection is not None and not connection.is_closed:
            try:
                await connection.close()
            except Exception as e:
                logger.error("Error closing broker connection", connection=self.name, error=str(e))
                return

        logger.info("Disconnected from broker", connection=self.name)

    async def wait_for_reconnect(self) -> ConnectionState:
        """Wait for a running reconnect task to finish and return the resulting state."""
        task = self._reconnect_task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass
        return self._state

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug(
                "Broker connection state changed",
                connection=self.name,
                old_state=self._state.value,
                new_state=state.value
            )
        self._state = state

    async def _try_connect(self) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        connection: Optional[AbstractConnection] = None

        try:
            connection = await self._connector(self.url)
            channel = await connection.channel(publisher_confirms=self.publisher_confirms)

            for callback in self._setup_callbacks:
                await callback(channel)

        except Exception as e:
            logger.warning(
                "Failed to connect to broker",
                connection=self.name,
                error=str(e)
            )
            self._set_state(ConnectionState.DISCONNECTED)
            if connection is not None and not connection.is_closed:
                try:
                    await connection.close()
                except Exception as close_error:
                    logger.debug(
                        "Error closing half-open broker connection",
                        connection=self.name,
                        error=str(close_error)
                    )
            return False

        if self._closing:
            await connection.close()
            self._set_state(ConnectionState.DISCONNECTED)
            return False

        self._generation += 1
        on_closed = partial(self._on_closed, self._generation)
        connection.close_callbacks.add(on_closed)
        channel.close_callbacks.add(on_closed)

        self._connection = connection
        self._channel = channel
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)

        logger.info("Successfully connected to broker", connection=self.name)
        return True

    def _on_closed(
        self,
        generation: int,
        sender: Any,
        exc: Optional[BaseException] = None,
        *args: Any,
        **kwargs: Any
    ) -> None:
        # stale callbacks from a connection we already replaced or closed
        if self._closing or generation != self._generation or self._connection is None:
            return

        logger.warning(
            "Broker connection lost",
            connection=self.name,
            closed=type(sender).__name__,
            error=str(exc) if exc else None
        )

        connection = self._connection
        self._connection = None
        self._channel = None
        self._set_state(ConnectionState.DISCONNECTED)

        # a closed channel on a live connection still leaves us unusable
        if not connection.is_closed:
            task = asyncio.create_task(self._close_quietly(connection))
            self._pending_closes.add(task)
            task.add_done_callback(self._pending_closes.discard)

        self._schedule_reconnect()

    async def _close_quietly(self, connection: AbstractConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Error closing stale broker connection", connection=self.name, error=str(e))

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closing and self._state is ConnectionState.DISCONNECTED:
            if self._reconnect_attempts >= self.max_reconnect_attempts:
                logger.error(
                    "Max broker reconnect attempts reached. Running without message queue.",
                    connection=self.name,
                    attempts=self._reconnect_attempts
                )
                return

            self._reconnect_attempts += 1
            logger.info(
                "Scheduling broker reconnect attempt",
                connection=self.name,
                attempt=self._reconnect_attempts,
                max_attempts=self.max_reconnect_attempts,
                delay_seconds=self.reconnect_delay
            )

            await asyncio.sleep(self.reconnect_delay)
            if self._closing:
                return

            await self._try_connect()
