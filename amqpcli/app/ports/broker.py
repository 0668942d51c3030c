"""Broker port: the capability set the loops depend on.

Application code depends on these protocols; infrastructure (aio_pika) implements them,
and tests substitute in-memory fakes that replay scripted deliveries.
"""
from __future__ import annotations

from typing import Protocol

from amqpcli.app.domain.models import Delivery


class BrokerError(Exception):
    """Base for broker failures. All of them are fatal to the running command."""


class BrokerConnectionError(BrokerError):
    """Raised when the broker cannot be reached or refuses the credentials."""


class TransportError(BrokerError):
    """Raised when an ack, reject, publish, prefetch or consume call fails mid-operation."""


class Acker(Protocol):
    """Settles one delivery. A multiple ack also settles every earlier unsettled delivery."""

    async def ack(self, *, multiple: bool = False) -> None: ...

    async def reject(self, *, requeue: bool = False) -> None: ...


class DeliveryStream(Protocol):
    """Open consume session on a queue."""

    @property
    def consumer_tag(self) -> str: ...

    async def next_delivery(self, timeout: float | None = None) -> Delivery | None:
        """Wait up to `timeout` seconds; return None if nothing arrived in time."""
        ...


class Channel(Protocol):
    async def set_prefetch(self, count: int) -> None: ...

    async def consume(
        self,
        queue: str,
        consumer_tag: str = "",
        *,
        no_ack: bool = False,
    ) -> DeliveryStream: ...

    async def publish(self, exchange: str, routing_key: str, payload: bytes) -> None:
        """Publish and wait for the broker confirm; raise TransportError on failure."""
        ...

    async def close(self) -> None: ...


class BrokerConnection(Protocol):
    async def open_channel(self) -> Channel: ...

    async def close(self) -> None: ...


class BrokerConnector(Protocol):
    async def connect(self, address: str) -> BrokerConnection:
        """Open a connection; raise BrokerConnectionError on network or auth failure."""
        ...
