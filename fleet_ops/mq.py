from __future__ import annotations

"""
File: fleet_ops/mq.py
Purpose: Optional RabbitMQ fan-out of simulation updates.
Key responsibilities:
- Declare the topic exchange.
- Publish vehicles.updated / deliveries.updated events.
Config/env vars:
- EVENTS_ENABLED, RABBITMQ_*
"""

import json
import logging
from typing import Any

import aio_pika
from aio_pika import ExchangeType

logger = logging.getLogger("fleet-ops.mq")


async def connect(rabbit_url: str) -> aio_pika.RobustConnection:
    """Connect to RabbitMQ with robust reconnect behavior."""
    return await aio_pika.connect_robust(rabbit_url)


async def setup_topology(channel: aio_pika.abc.AbstractRobustChannel, exchange_name: str):
    """Declare the events exchange."""
    return await channel.declare_exchange(exchange_name, ExchangeType.TOPIC, durable=True)


def build_message(payload: dict[str, Any]) -> aio_pika.Message:
    body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return aio_pika.Message(
        body=body,
        content_type="application/json",
        delivery_mode=aio_pika.DeliveryMode.NOT_PERSISTENT,
    )


async def publish_event(exchange: aio_pika.abc.AbstractExchange, routing_key: str, payload: dict[str, Any]) -> None:
    """Publish a JSON message to the configured exchange."""
    await exchange.publish(build_message(payload), routing_key=routing_key)


class EventPublisher:
    """Publishes session updates to a topic exchange once started."""
    def __init__(self, rabbit_url: str, exchange_name: str) -> None:
        self.rabbit_url = rabbit_url
        self.exchange_name = exchange_name
        self.connection: aio_pika.RobustConnection | None = None
        self.exchange: aio_pika.abc.AbstractExchange | None = None

    async def start(self) -> None:
        self.connection = await connect(self.rabbit_url)
        channel = await self.connection.channel()
        self.exchange = await setup_topology(channel, self.exchange_name)
        logger.info("event publisher started exchange=%s", self.exchange_name)

    async def publish(self, routing_key: str, payload: dict[str, Any]) -> None:
        if self.exchange is None:
            return
        try:
            await publish_event(self.exchange, routing_key, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("publish failed routing_key=%s err=%s", routing_key, exc)

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
        self.connection = None
        self.exchange = None
