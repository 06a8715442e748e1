"""
Registry of outbound delivery channels.

The senders themselves (email provider, SMS gateway) live outside this
package; they register here at startup and the notification worker looks
them up by channel type.

Example:
    class ConsoleSender:
        async def send(self, recipient: str, subject: str, body: str) -> None:
            print(recipient, subject, body)

    register_channel(DeliveryChannelType.EMAIL, ConsoleSender())
"""

from typing import Protocol

from careauth.core.config import notification_logger
from careauth.core.enums import DeliveryChannelType

__all__ = [
    "DeliveryChannel",
    "register_channel",
    "get_channel",
    "reset_channels",
]


class DeliveryChannel(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> None: ...


_channels: dict[DeliveryChannelType, DeliveryChannel] = {}


def register_channel(
    channel_type: DeliveryChannelType, channel: DeliveryChannel
) -> None:
    _channels[channel_type] = channel
    notification_logger.info(
        f"Delivery channel registered: {channel_type.value} -> {type(channel).__name__}"
    )


def get_channel(channel_type: DeliveryChannelType) -> DeliveryChannel | None:
    return _channels.get(channel_type)


def reset_channels() -> None:
    _channels.clear()
