"""Composition root: build and lifecycle-manage the broker connection and channel.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from amqpcli.app.config.settings import Settings
from amqpcli.app.core import SERVICE_NAME
from amqpcli.app.core.backoff import exponential_backoff
from amqpcli.app.infrastructure.messaging.factory import create_broker_connector
from amqpcli.app.ports.broker import BrokerConnection, BrokerConnectionError, BrokerConnector, Channel


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class BrokerSession:
    """Holds the one connection and one channel a command runs on."""

    def __init__(self, *, settings: Settings, connector: BrokerConnector) -> None:
        self._settings = settings
        self._connector = connector
        self._connection: BrokerConnection | None = None
        self._channel: Channel | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def channel(self) -> Channel:
        if self._channel is None:
            raise RuntimeError("channel is not initialized")
        return self._channel

    async def connect(self) -> None:
        attempt = 0
        slept = 0.0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            attempt += 1
            _log("rmq_connect_attempt", attempt=attempt, delay=slept)
            try:
                self._connection = await self._connector.connect(self._settings.amqp_addr)
                break
            except BrokerConnectionError as e:
                logger.warning("rmq connect failed: {}", e)
                if attempt >= self._settings.max_connection_attempts:
                    _log("rmq_connect_failed", attempt=attempt)
                    raise
                slept = delay
        if self._connection is None:
            raise BrokerConnectionError("no connection attempts were made")
        _log("rmq_connected")

        try:
            self._channel = await self._connection.open_channel()
        except Exception:
            await self.close()
            raise

    async def close(self) -> None:
        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as exc:
                logger.warning("channel close failed (continuing to close connection): {}", exc)
            self._channel = None

        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as exc:
                logger.warning("connection close failed: {}", exc)
            self._connection = None


def create_broker_session(settings: Settings | None = None) -> BrokerSession:
    _settings = settings or Settings()
    return BrokerSession(settings=_settings, connector=create_broker_connector(_settings))
