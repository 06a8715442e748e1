"""
OTP notification worker.

Standalone Usage:
    python -m careauth.infrastructure.messaging.main

Delivery channels must be registered with
``careauth.core.services.delivery.register_channel`` before messages arrive;
messages for a type with no channel are retried and then dead-lettered.
"""

import asyncio
import signal
from functools import partial

import aio_pika

from careauth.core.config import rabbitmq_logger
from careauth.core.services.notification import NotificationDispatcher
from careauth.infrastructure.messaging.connection import close_connection, get_connection
from careauth.infrastructure.messaging.consumer import process_message
from careauth.infrastructure.messaging.publisher import publish_event
from careauth.infrastructure.messaging.queues import get_queue_configs


async def declare_queues(channel: aio_pika.abc.AbstractChannel) -> None:
    """Declare every main, retry and dead-letter queue, then start consuming."""
    for q in get_queue_configs():
        queue = await channel.declare_queue(q.name, durable=True)

        # Retry queue setup
        if retry := q.retry_queue:
            await channel.declare_queue(
                retry,
                durable=True,
                arguments={
                    "x-message-ttl": q.retry_ttl,
                    "x-dead-letter-exchange": "",
                    "x-dead-letter-routing-key": q.name,
                },
            )

        # Dead-letter queue setup
        if dead := q.dead_letter_queue:
            await channel.declare_queue(dead, durable=True)

        await queue.consume(
            partial(
                process_message,
                handler=q.handler,
                channel=channel,
                retry_queue=q.retry_queue,
                max_retries=q.max_retries,
                dead_letter_queue=q.dead_letter_queue,
            ),
            no_ack=False,
        )
        rabbitmq_logger.info(f"Consuming from {q.name}")


async def start_consumers(keep_alive: bool) -> aio_pika.RobustConnection | None:
    """
    Start a consumer for every configured queue.

    Args:
        keep_alive: If True, block forever and close the connection on exit.
            If False, return the connection and let the caller close it.
    """
    conn = await get_connection()
    channel = await conn.channel()
    await channel.set_qos(prefetch_count=10)

    await declare_queues(channel)
    rabbitmq_logger.info("Consumers started. Waiting for messages...")

    if keep_alive:
        try:
            await asyncio.Future()  # Run forever
        finally:
            await conn.close()
            rabbitmq_logger.info("Connection closed.")
        return None
    return conn


async def main() -> None:
    """Run the consumers until SIGINT/SIGTERM."""
    shutdown_event = asyncio.Event()
    conn: aio_pika.RobustConnection | None = None

    def handle_shutdown(signum, frame):
        rabbitmq_logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    rabbitmq_logger.info("Starting standalone message consumer...")

    try:
        # Codes issued from this process (none today) still go through the queue
        NotificationDispatcher.init(publish_event)

        conn = await start_consumers(keep_alive=False)
        await shutdown_event.wait()

    except Exception as e:
        rabbitmq_logger.exception(f"Messaging error: {e}")
        raise

    finally:
        rabbitmq_logger.info("Shutting down message consumer...")
        await NotificationDispatcher.drain()
        if conn:
            await close_connection()
        rabbitmq_logger.info("Message consumer shutdown complete.")


if __name__ == "__main__":
    asyncio.run(main())
