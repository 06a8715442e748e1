"""
Test suite for the shared RabbitMQ connection.

Run tests:
    pytest tests/infrastructure/messaging/test_connection.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from careauth.infrastructure.messaging import connection as connection_module
from careauth.infrastructure.messaging.connection import close_connection, get_connection


@pytest.fixture(autouse=True)
def reset_connection():
    connection_module._connection = None
    yield
    connection_module._connection = None


def make_connection(is_closed: bool = False) -> MagicMock:
    conn = MagicMock()
    conn.is_closed = is_closed
    conn.close = AsyncMock()
    return conn


class TestGetConnection:

    async def test_connection_is_reused(self):
        conn = make_connection()
        with patch(
            "careauth.infrastructure.messaging.connection.aio_pika.connect_robust",
            new_callable=AsyncMock,
            return_value=conn,
        ) as mock_connect:
            assert await get_connection() is conn
            assert await get_connection() is conn

        mock_connect.assert_awaited_once()

    async def test_closed_connection_is_replaced(self):
        stale = make_connection(is_closed=True)
        fresh = make_connection()
        connection_module._connection = stale
        with patch(
            "careauth.infrastructure.messaging.connection.aio_pika.connect_robust",
            new_callable=AsyncMock,
            return_value=fresh,
        ):
            assert await get_connection() is fresh


class TestCloseConnection:

    async def test_closes_open_connection(self):
        conn = make_connection()
        connection_module._connection = conn

        await close_connection()

        conn.close.assert_awaited_once()
        assert connection_module._connection is None

    async def test_noop_without_connection(self):
        await close_connection()

        assert connection_module._connection is None
