"""Adapter: wrap aio_pika.IncomingMessage to implement ports.broker.Acker."""
from __future__ import annotations

from aio_pika.abc import AbstractIncomingMessage

from amqpcli.app.ports.broker import TransportError


class AioPikaAcker:
    """Implements amqpcli.app.ports.broker.Acker for aio_pika."""

    def __init__(self, message: AbstractIncomingMessage) -> None:
        self._message = message

    @property
    def delivery_tag(self) -> int | None:
        return self._message.delivery_tag

    async def ack(self, *, multiple: bool = False) -> None:
        try:
            await self._message.ack(multiple=multiple)
        except Exception as e:
            raise TransportError(f"ack failed for delivery {self.delivery_tag}: {e}") from e

    async def reject(self, *, requeue: bool = False) -> None:
        try:
            await self._message.reject(requeue=requeue)
        except Exception as e:
            raise TransportError(f"reject failed for delivery {self.delivery_tag}: {e}") from e
