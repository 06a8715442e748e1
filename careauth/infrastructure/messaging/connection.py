import aio_pika

from careauth.core.config import rabbitmq_logger, settings

_connection: aio_pika.RobustConnection | None = None


async def get_connection() -> aio_pika.RobustConnection:
    """
    Return the shared robust RabbitMQ connection, reconnecting if it is
    missing or closed.
    """
    global _connection
    if _connection is None or _connection.is_closed:
        _connection = await aio_pika.connect_robust(settings.RABBITMQ_URL)  # type: ignore[assignment]
        rabbitmq_logger.info("RabbitMQ connection established")
    return _connection  # type: ignore[return-value]


async def close_connection() -> None:
    global _connection
    if _connection is not None and not _connection.is_closed:
        await _connection.close()
        rabbitmq_logger.info("RabbitMQ connection closed")
    _connection = None
