"""Broker connector factory: selects implementation from config. Only place that imports concrete brokers."""
from __future__ import annotations

from amqpcli.app.config.settings import Settings
from amqpcli.app.infrastructure.messaging.rabbitmq.aio_pika_broker import AioPikaConnector
from amqpcli.app.ports.broker import BrokerConnector


def create_broker_connector(settings: Settings) -> BrokerConnector:
    backend = settings.broker_backend.strip().lower()

    if backend == "rabbitmq":
        return AioPikaConnector(publish_timeout=settings.publish_timeout_seconds)

    raise ValueError(f"Unsupported broker backend: {backend}")
