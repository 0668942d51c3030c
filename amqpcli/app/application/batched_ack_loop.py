"""Batched-ack consume mode: print accepted payloads as lines, settle them with cumulative acks."""
from __future__ import annotations

from typing import Any, BinaryIO

from loguru import logger

from amqpcli.app.core import SERVICE_NAME
from amqpcli.app.domain.classifier import classify
from amqpcli.app.domain.models import Accept, Delivery, RejectNewline, RejectParseError
from amqpcli.app.domain.pending_window import PendingWindow
from amqpcli.app.ports.broker import Channel, DeliveryStream

DEFAULT_IDLE_TIMEOUT_SECONDS = 1.0


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class BatchedAckLoop:
    """
    Consumes a queue, prints each acceptable payload as one line and acknowledges in batches.

    Accepted deliveries go into a PendingWindow. The window is flushed with one cumulative
    ack when it reaches batch_size, or when no delivery arrives within idle_timeout so a
    slow trickle of messages is never left unacknowledged for long. Deliveries that fail
    classification are rejected individually unless the matching *_error_ack flag is set,
    in which case they join the window without being printed.

    Both streams are binary. Accepted payloads are written as the UTF-8 bytes that arrived,
    independent of the locale encoding of the terminal.

    Prefetch is set to two batches so the broker keeps sending while a batch is assembled.
    """

    def __init__(
        self,
        channel: Channel,
        queue: str,
        *,
        out: BinaryIO,
        err: BinaryIO,
        consumer_tag: str = "",
        batch_size: int = 256,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        newline_error_ack: bool = False,
        parse_error_ack: bool = False,
    ) -> None:
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        self._channel = channel
        self._queue = queue
        self._consumer_tag = consumer_tag
        self._out = out
        self._err = err
        self._idle_timeout = idle_timeout
        self._newline_error_ack = newline_error_ack
        self._parse_error_ack = parse_error_ack
        self._window = PendingWindow(batch_size)

    @property
    def window(self) -> PendingWindow:
        return self._window

    @property
    def prefetch_count(self) -> int:
        return self._window.batch_size * 2

    async def run(self) -> None:
        """Consume until a transport failure propagates or the task is cancelled."""
        await self._channel.set_prefetch(self.prefetch_count)
        stream = await self._channel.consume(self._queue, self._consumer_tag, no_ack=False)
        _log(
            "consume_started",
            queue=self._queue,
            consumer_tag=stream.consumer_tag,
            batch_size=self._window.batch_size,
            prefetch_count=self.prefetch_count,
        )
        await self.consume(stream)

    async def consume(self, stream: DeliveryStream) -> None:
        while True:
            delivery = await stream.next_delivery(self._idle_timeout)
            if delivery is None:
                await self.on_idle()
            else:
                await self.on_delivery(delivery)

    async def on_idle(self) -> None:
        if self._window.pending:
            await self._flush(reason="idle")

    async def on_delivery(self, delivery: Delivery) -> None:
        outcome = classify(delivery.payload)
        if isinstance(outcome, Accept):
            self._out.write(delivery.payload + b"\n")
            self._window.add(delivery.acker)
        else:
            self._err.write(outcome.diagnostic.encode("utf-8") + b"\n")
            self._err.flush()
            if self._acks_on_error(outcome):
                self._window.add(delivery.acker)
            else:
                await delivery.acker.reject(requeue=False)

        if self._window.full:
            await self._flush(reason="batch")

    def _acks_on_error(self, outcome: RejectNewline | RejectParseError) -> bool:
        if isinstance(outcome, RejectNewline):
            return self._newline_error_ack
        return self._parse_error_ack

    async def _flush(self, *, reason: str) -> None:
        count = self._window.count
        acker = self._window.take()
        # Lines must be out of the process before the broker forgets them.
        self._out.flush()
        await acker.ack(multiple=True)
        logger.bind(service_name=SERVICE_NAME, event="batch_flushed", reason=reason, count=count).debug("")
