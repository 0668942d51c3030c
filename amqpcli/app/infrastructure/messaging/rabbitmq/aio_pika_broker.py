"""
aio_pika implementation of the broker port.

Connections are plain, not robust. Delivery tags are scoped to a channel, so a reconnect
cannot settle ackers the pending window already holds; any channel or connection loss
surfaces as TransportError instead.

Deliveries are handed from the aio_pika consumer callback to the loop through an
asyncio.Queue, which keeps receipt order and lets the loop wait with a timeout without
cancelling anything inside aio_pika.
"""
from __future__ import annotations

import asyncio
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange, AbstractIncomingMessage, AbstractQueue

from amqpcli.app.domain.models import Delivery
from amqpcli.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import AioPikaAcker
from amqpcli.app.ports.broker import BrokerConnectionError, TransportError


class _ChannelClosed:
    def __init__(self, reason: Any) -> None:
        self.reason = reason


class AioPikaDeliveryStream:
    """Implements amqpcli.app.ports.broker.DeliveryStream on top of queue.consume()."""

    def __init__(self, queue: AbstractQueue) -> None:
        self._queue = queue
        self._buffer: asyncio.Queue[AbstractIncomingMessage | _ChannelClosed] = asyncio.Queue()
        self._consumer_tag: str | None = None

    @property
    def consumer_tag(self) -> str:
        return self._consumer_tag or ""

    async def start(self, consumer_tag: str, *, no_ack: bool) -> None:
        try:
            self._consumer_tag = await self._queue.consume(
                self._on_message,
                no_ack=no_ack,
                consumer_tag=consumer_tag or None,
            )
        except Exception as e:
            raise TransportError(f"consume on queue {self._queue.name!r} failed: {e}") from e

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        self._buffer.put_nowait(message)

    def channel_closed(self, reason: Any) -> None:
        self._buffer.put_nowait(_ChannelClosed(reason))

    async def next_delivery(self, timeout: float | None = None) -> Delivery | None:
        try:
            item = await asyncio.wait_for(self._buffer.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if isinstance(item, _ChannelClosed):
            # Keep the marker so every later call fails the same way.
            self._buffer.put_nowait(item)
            raise TransportError(f"channel closed while consuming: {item.reason}")
        return Delivery(payload=item.body, acker=AioPikaAcker(item))


class AioPikaChannel:
    """Implements amqpcli.app.ports.broker.Channel for aio_pika."""

    def __init__(self, channel: AbstractChannel, *, publish_timeout: float | None = None) -> None:
        self._channel = channel
        self._publish_timeout = publish_timeout
        self._exchanges: dict[str, AbstractExchange] = {}
        self._streams: list[AioPikaDeliveryStream] = []
        self._channel.close_callbacks.add(self._on_channel_closed)

    def _on_channel_closed(self, *args: Any, **kwargs: Any) -> None:
        reason = args[-1] if args else None
        for stream in self._streams:
            stream.channel_closed(reason)

    async def set_prefetch(self, count: int) -> None:
        try:
            await self._channel.set_qos(prefetch_count=count)
        except Exception as e:
            raise TransportError(f"setting prefetch to {count} failed: {e}") from e

    async def consume(
        self,
        queue: str,
        consumer_tag: str = "",
        *,
        no_ack: bool = False,
    ) -> AioPikaDeliveryStream:
        try:
            amqp_queue = await self._channel.get_queue(queue, ensure=False)
        except Exception as e:
            raise TransportError(f"queue {queue!r} unavailable: {e}") from e
        stream = AioPikaDeliveryStream(amqp_queue)
        self._streams.append(stream)
        await stream.start(consumer_tag, no_ack=no_ack)
        return stream

    async def _get_exchange(self, name: str) -> AbstractExchange:
        if not name:
            return self._channel.default_exchange
        exchange = self._exchanges.get(name)
        if exchange is None:
            exchange = await self._channel.get_exchange(name, ensure=False)
            self._exchanges[name] = exchange
        return exchange

    async def publish(self, exchange: str, routing_key: str, payload: bytes) -> None:
        try:
            target = await self._get_exchange(exchange)
            await target.publish(
                aio_pika.Message(body=payload),
                routing_key=routing_key,
                mandatory=False,
                timeout=self._publish_timeout,
            )
        except Exception as e:
            raise TransportError(
                f"publish to exchange {exchange!r} with routing key {routing_key!r} failed: {e}"
            ) from e

    async def close(self) -> None:
        if self._channel.is_closed:
            return
        await self._channel.close()


class AioPikaConnection:
    """Implements amqpcli.app.ports.broker.BrokerConnection for aio_pika."""

    def __init__(self, connection: AbstractConnection, *, publish_timeout: float | None = None) -> None:
        self._connection = connection
        self._publish_timeout = publish_timeout

    async def open_channel(self) -> AioPikaChannel:
        try:
            channel = await self._connection.channel(publisher_confirms=True)
        except Exception as e:
            raise TransportError(f"channel open failed: {e}") from e
        return AioPikaChannel(channel, publish_timeout=self._publish_timeout)

    async def close(self) -> None:
        if self._connection.is_closed:
            return
        await self._connection.close()


class AioPikaConnector:
    """Implements amqpcli.app.ports.broker.BrokerConnector for aio_pika."""

    def __init__(self, *, publish_timeout: float | None = None) -> None:
        self._publish_timeout = publish_timeout

    async def connect(self, address: str) -> AioPikaConnection:
        try:
            connection = await aio_pika.connect(address)
        except Exception as e:
            raise BrokerConnectionError(f"cannot connect to broker: {e}") from e
        return AioPikaConnection(connection, publish_timeout=self._publish_timeout)
