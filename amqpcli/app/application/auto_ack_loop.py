"""Auto-ack consume mode: the broker settles each delivery on send, the client only prints."""
from __future__ import annotations

from typing import Any, BinaryIO

from loguru import logger

from amqpcli.app.core import SERVICE_NAME
from amqpcli.app.ports.broker import Channel, DeliveryStream


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class AutoAckLoop:
    """Writes every payload followed by a newline, without decoding or classifying it."""

    def __init__(self, channel: Channel, queue: str, *, out: BinaryIO, consumer_tag: str = "") -> None:
        self._channel = channel
        self._queue = queue
        self._consumer_tag = consumer_tag
        self._out = out

    async def run(self) -> None:
        stream = await self._channel.consume(self._queue, self._consumer_tag, no_ack=True)
        _log("consume_started", queue=self._queue, consumer_tag=stream.consumer_tag, no_ack=True)
        await self.consume(stream)

    async def consume(self, stream: DeliveryStream) -> None:
        while True:
            delivery = await stream.next_delivery()
            if delivery is None:
                continue
            self._out.write(delivery.payload + b"\n")
            self._out.flush()
