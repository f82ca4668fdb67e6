"""Self-healing RabbitMQ connection.

Owns one AMQP connection with a consumer channel and a producer channel,
and declares the topology shared by every bus: the event exchange, the
dead-letter exchange and the dead-letter queue. When the broker closes the
connection or one of the channels unexpectedly, a single reconnection is
scheduled and retried until it succeeds; listeners registered in
``on_reconnected`` then restore their own state (consumers, bindings).
Publishers wait in ``wait_until_connected`` while a reconnection is pending.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange

from .config import RabbitSettings

LOGGER = logging.getLogger(__name__)

ReconnectedCallback = Callable[[], Awaitable[None]]


class RabbitConnection:
    """A RabbitMQ connection that reconnects by itself.

    Example:
        >>> connection = RabbitConnection(RabbitSettings())
        >>> await connection.connect()
        >>> await connection.exchange.publish(message, routing_key="ItemAdded")
        >>> await connection.terminate()
    """

    def __init__(self, settings: RabbitSettings, logger: logging.Logger | None = None):
        self.settings = settings
        self._logger = logger or LOGGER
        self.on_reconnected: list[ReconnectedCallback] = []

        self._connection: AbstractConnection | None = None
        self._consumer_channel: AbstractChannel | None = None
        self._producer_channel: AbstractChannel | None = None
        self._exchange: AbstractExchange | None = None

        self._reconnection: asyncio.Task[None] | None = None
        self._stopping = False
        self._ready = asyncio.Event()

    @property
    def consumer_channel(self) -> AbstractChannel:
        if self._consumer_channel is None:
            raise RuntimeError("Rabbit connection is not established")
        return self._consumer_channel

    @property
    def producer_channel(self) -> AbstractChannel:
        if self._producer_channel is None:
            raise RuntimeError("Rabbit connection is not established")
        return self._producer_channel

    @property
    def exchange(self) -> AbstractExchange:
        """The event exchange, declared on the producer channel."""
        if self._exchange is None:
            raise RuntimeError("Rabbit connection is not established")
        return self._exchange

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(self) -> None:
        """Open the connection and channels and declare the shared topology."""
        self._logger.debug("Starting Rabbit connection")
        self._stopping = False
        try:
            connection = await aio_pika.connect(self.settings.url)
            self._connection = connection
            connection.close_callbacks.add(self._on_connection_closed)

            self._consumer_channel = await connection.channel()
            await self._consumer_channel.set_qos(prefetch_count=self.settings.prefetch)
            self._consumer_channel.close_callbacks.add(self._on_channel_closed)

            self._producer_channel = await connection.channel(publisher_confirms=True)
            self._producer_channel.close_callbacks.add(self._on_channel_closed)

            await self._setup_exchanges()
            await self._setup_dead_letter_queue()
        except Exception as err:
            self._logger.error(f"Error connecting to Rabbit {err!r}")
            await self._close()
            raise
        self._ready.set()
        self._logger.debug("Rabbit connection established")

    async def terminate(self) -> None:
        """Close channels and connection. Close notifications are ignored from now on."""
        self._logger.debug("Stopping Rabbit connection")
        self._stopping = True
        if self._reconnection is not None:
            self._reconnection.cancel()
            await asyncio.gather(self._reconnection, return_exceptions=True)
            self._reconnection = None
        await self._close()
        self._logger.debug("Rabbit connection stopped")

    async def wait_until_connected(self) -> None:
        """Wait for a pending reconnection to complete.

        Returns at once while connected.

        Raises:
            RuntimeError: If the connection was never opened, was terminated,
                or is not being re-established.
        """
        while not self._ready.is_set():
            reconnection = self._reconnection
            if self._stopping or reconnection is None or reconnection.done():
                raise RuntimeError("Rabbit connection is not established")
            await asyncio.wait({reconnection})

    async def _setup_exchanges(self) -> None:
        self._exchange = await self.producer_channel.declare_exchange(
            self.settings.exchange_name, aio_pika.ExchangeType.DIRECT, durable=True
        )
        await self.producer_channel.declare_exchange(
            self.settings.dead_letter_exchange, aio_pika.ExchangeType.TOPIC, durable=True
        )

    async def _setup_dead_letter_queue(self) -> None:
        queue = await self.consumer_channel.declare_queue(
            self.settings.dead_letter_queue,
            durable=True,
            arguments={"x-queue-type": "quorum"},
        )
        await queue.bind(self.settings.dead_letter_exchange, routing_key="#")

    async def _close(self) -> None:
        self._ready.clear()
        connection = self._connection
        self._connection = None
        self._consumer_channel = None
        self._producer_channel = None
        self._exchange = None
        if connection is not None and not connection.is_closed:
            await connection.close()

    # ========== Reconnection ==========

    def _on_connection_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        if self._stopping or sender is not self._connection:
            return
        self._ready.clear()
        self._logger.error(f"Connection with Rabbit closed with {exc!r}, trying to reconnect")
        self._schedule_reconnection()

    def _on_channel_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        if self._stopping or sender not in (self._consumer_channel, self._producer_channel):
            return
        self._ready.clear()
        self._logger.error(f"Channel with Rabbit closed with {exc!r}, trying to reconnect")
        self._schedule_reconnection()

    def _schedule_reconnection(self) -> None:
        if self._reconnection is not None and not self._reconnection.done():
            self._logger.warning("Reconnection already scheduled")
            return
        self._reconnection = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self.settings.reconnection_delay)
            try:
                await self._close()
                await self.connect()
            except Exception:
                self._logger.error("Unable to connect with Rabbit, scheduling a new connection")
                continue
            await self._restore()
            return

    async def _restore(self) -> None:
        for callback in self.on_reconnected:
            try:
                await callback()
            except Exception as err:
                self._logger.error(f"Failed to restore state after reconnection {err!r}")
