import json
from typing import Any

import aio_pika

from careauth.infrastructure.messaging.connection import get_connection


async def publish_event(
    queue_name: str, event: dict[str, Any], headers: dict[str, Any] | None = None
) -> None:
    """
    Publish an event as a persistent JSON message on ``queue_name``.

    Args:
        queue_name: Target queue, declared durable if missing.
        event: JSON-serialisable payload.
        headers: Extra AMQP headers.

    Raises:
        Any exception from the connection or the publish itself.
    """
    connection = await get_connection()
    channel = await connection.channel()
    try:
        await channel.declare_queue(queue_name, durable=True)

        message = aio_pika.Message(
            body=json.dumps(event).encode(),
            headers=headers or {},
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )

        await channel.default_exchange.publish(message, routing_key=queue_name)
    finally:
        await channel.close()
