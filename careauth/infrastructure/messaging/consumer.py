import json
from typing import Callable, Any

import aio_pika

from careauth.core.config import rabbitmq_logger


async def process_message(
    message: aio_pika.abc.AbstractIncomingMessage,
    handler: Callable[[dict[str, Any]], Any],
    channel: aio_pika.abc.AbstractChannel,
    retry_queue: str | None = None,
    max_retries: int | None = None,
    dead_letter_queue: str | None = None,
) -> None:
    """
    Run ``handler`` on a message body, routing failures through retry and
    dead-letter queues.

    Args:
        message: The incoming message.
        handler: Async function taking the decoded JSON payload.
        channel: Channel used to republish failed messages.
        retry_queue: Retry queue name.
        max_retries: Retry limit, or None for unlimited retries.
        dead_letter_queue: Where messages go once retries are exhausted.

    Behavior:
        - The handler succeeding acks the message.
        - A failure increments ``x-retry-attempt`` and republishes to the retry
          queue while attempts remain.
        - Otherwise the message goes to the dead-letter queue with
          ``x-error-message`` and ``x-original-queue`` headers.
        - The original is rejected without requeue in both failure cases.

    Never raises; errors are logged.
    """
    async with message.process(ignore_processed=True):
        try:
            event = json.loads(message.body.decode())
            await handler(event)
        except Exception as e:
            rabbitmq_logger.error(f"Error in handler: {e}")
            headers = dict(message.headers or {})
            attempt = int(headers.get("x-retry-attempt", 0))  # type: ignore[arg-type]
            next_queue: str | None = None

            if retry_queue and (not max_retries or attempt < max_retries):
                next_queue = retry_queue

            if next_queue:
                headers["x-retry-attempt"] = attempt + 1
                await channel.default_exchange.publish(
                    aio_pika.Message(
                        body=message.body,
                        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                        headers=headers,
                    ),
                    routing_key=next_queue,
                )
                rabbitmq_logger.info(
                    f"Retrying message via {next_queue} (attempt {attempt + 1})"
                )

            # Dead-letter logic
            elif dead_letter_queue:
                headers["x-error-message"] = str(e)
                # Derive the original main queue from the DLQ name
                if dead_letter_queue.endswith("_dead"):
                    headers["x-original-queue"] = dead_letter_queue[: -len("_dead")]

                await channel.default_exchange.publish(
                    aio_pika.Message(
                        body=message.body,
                        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                        headers=headers,
                    ),
                    routing_key=dead_letter_queue,
                )
                rabbitmq_logger.error(
                    f"Message dead-lettered to {dead_letter_queue} after {attempt} retries"
                )

            # Reject the message without requeuing
            await message.reject(requeue=False)
