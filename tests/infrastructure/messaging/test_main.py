"""
Test suite for consumer startup.

Run tests:
    pytest tests/infrastructure/messaging/test_main.py -v
"""

from unittest.mock import AsyncMock

from careauth.infrastructure.messaging.main import declare_queues


class TestDeclareQueues:

    async def test_declares_main_retry_and_dead_queues(self):
        channel = AsyncMock()
        queue = AsyncMock()
        channel.declare_queue.return_value = queue

        await declare_queues(channel)

        declared = {
            call.args[0]: call.kwargs for call in channel.declare_queue.call_args_list
        }
        assert set(declared) == {
            "otp_notifications",
            "otp_notifications_retry",
            "otp_notifications_dead",
        }
        retry_args = declared["otp_notifications_retry"]["arguments"]
        assert retry_args["x-message-ttl"] == 30000
        assert retry_args["x-dead-letter-routing-key"] == "otp_notifications"
        queue.consume.assert_awaited()
        assert queue.consume.await_args.kwargs["no_ack"] is False
        callback = queue.consume.await_args.args[0]
        assert callback.keywords["retry_queue"] == "otp_notifications_retry"
        assert callback.keywords["max_retries"] == 3
        assert callback.keywords["dead_letter_queue"] == "otp_notifications_dead"
