"""
Test suite for RabbitMQ message publisher.

Run tests:
    pytest tests/infrastructure/messaging/test_publisher.py -v
"""

import json
from unittest.mock import AsyncMock, patch

import aio_pika
import pytest

from careauth.infrastructure.messaging.publisher import publish_event


@pytest.fixture
def mock_channel():
    channel = AsyncMock(spec=aio_pika.Channel)
    channel.default_exchange = AsyncMock()
    return channel


@pytest.fixture
def mock_get_connection(mock_channel):
    connection = AsyncMock(spec=aio_pika.RobustConnection)
    connection.channel = AsyncMock(return_value=mock_channel)
    with patch(
        "careauth.infrastructure.messaging.publisher.get_connection",
        new_callable=AsyncMock,
    ) as mock_get_conn:
        mock_get_conn.return_value = connection
        yield mock_get_conn


class TestPublishEvent:

    async def test_publishes_persistent_json(self, mock_get_connection, mock_channel):
        event = {"identifier": "a@b.com", "otp_code": "123456"}

        await publish_event("otp_notifications", event)

        mock_channel.declare_queue.assert_called_once_with(
            "otp_notifications", durable=True
        )
        call_args = mock_channel.default_exchange.publish.call_args
        message = call_args.args[0]
        assert call_args.kwargs["routing_key"] == "otp_notifications"
        assert json.loads(message.body.decode()) == event
        assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
        mock_channel.close.assert_awaited_once()

    async def test_headers_are_forwarded(self, mock_get_connection, mock_channel):
        await publish_event("q", {"data": 1}, {"x-source": "api"})

        message = mock_channel.default_exchange.publish.call_args.args[0]
        assert message.headers["x-source"] == "api"

    async def test_channel_closed_on_failure(self, mock_get_connection, mock_channel):
        mock_channel.default_exchange.publish.side_effect = ConnectionError("broken")

        with pytest.raises(ConnectionError):
            await publish_event("q", {"data": 1})

        mock_channel.close.assert_awaited_once()
