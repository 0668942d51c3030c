"""Publish path: one confirmed message per input line, strictly sequential."""
from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, BinaryIO

from loguru import logger

from amqpcli.app.core import SERVICE_NAME
from amqpcli.app.ports.broker import Channel

DEFAULT_READ_AHEAD_LINES = 16


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def strip_line_ending(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
    return line


class ThreadedLineReader:
    """
    Reads lines from a blocking binary stream on a daemon thread.

    The thread hands each line to the event loop through an asyncio.Queue and reads at
    most `read_ahead` lines ahead of the consumer. It is never joined: when the command is
    interrupted the process exits even if a read is still blocked on an open terminal or
    pipe. A read error is re-raised from readline().
    """

    def __init__(self, source: BinaryIO, *, read_ahead: int = DEFAULT_READ_AHEAD_LINES) -> None:
        self._source = source
        self._slots = threading.Semaphore(read_ahead)
        self._lines: asyncio.Queue[bytes | Exception] = asyncio.Queue()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._pump,
            args=(asyncio.get_running_loop(),),
            name="amqpcli-line-reader",
            daemon=True,
        )
        self._thread.start()

    def _pump(self, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            self._slots.acquire()
            item: bytes | Exception
            try:
                item = self._source.readline()
            except Exception as e:
                item = e
            try:
                loop.call_soon_threadsafe(self._lines.put_nowait, item)
            except RuntimeError:
                # Event loop already closed; nothing is left to receive lines.
                return
            if isinstance(item, Exception) or not item:
                return

    async def readline(self) -> bytes:
        """Next line including its ending, or b"" at EOF."""
        self.start()
        item = await self._lines.get()
        self._slots.release()
        if isinstance(item, Exception):
            raise item
        return item


class LinePublisher:
    def __init__(self, channel: Channel, *, exchange: str = "", routing_key: str = "") -> None:
        self._channel = channel
        self._exchange = exchange
        self._routing_key = routing_key

    async def run(self, source: BinaryIO) -> int:
        """Publish each line of `source` until EOF. Returns the number of messages published.

        Lines are read off the event loop so a quiet stdin does not stall the connection's
        heartbeats.
        """
        reader = ThreadedLineReader(source)
        published = 0
        start = time.perf_counter()
        while True:
            line = await reader.readline()
            if not line:
                break
            await self._channel.publish(self._exchange, self._routing_key, strip_line_ending(line))
            published += 1
        _log(
            "publish_finished",
            exchange=self._exchange,
            routing_key=self._routing_key,
            published=published,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return published
