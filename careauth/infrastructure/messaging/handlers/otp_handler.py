"""
OTP notification handler.

Consumes ``otp_notifications`` events published by ``NotificationDispatcher``
and hands them to the registered email or SMS channel. Any failure is
re-raised so the consumer can retry and, eventually, dead-letter the message.
The OTP record is never touched from here.
"""

from typing import Any

from careauth.core.config import notification_logger, settings
from careauth.core.enums import DeliveryChannelType, OTPPurpose
from careauth.core.services.delivery import get_channel
from careauth.core.services.notification import OTPNotificationEvent
from careauth.core.utils import is_email, mask_identifier

_SUBJECTS = {
    OTPPurpose.ACCOUNT_VERIFICATION: "Verify your account",
    OTPPurpose.PASSWORD_RESET: "Reset your password",
    OTPPurpose.EMAIL_UPDATE: "Confirm your new email address",
    OTPPurpose.PHONE_UPDATE: "Confirm your new phone number",
}


def build_message(event: OTPNotificationEvent) -> tuple[str, str]:
    """Return ``(subject, body)`` for an OTP event."""
    subject = f"{settings.APP_NAME}: {_SUBJECTS[event.purpose]}"
    body = f"Your {settings.APP_NAME} code is {event.otp_code}."
    if event.expires_at is not None:
        body += f" It expires at {event.expires_at:%H:%M} UTC."
    body += " Do not share it with anyone."
    return subject, body


async def handle_otp_notification(event: dict[str, Any]) -> None:
    """
    Deliver one OTP notification.

    Args:
        event: An ``OTPNotificationEvent`` payload.

    Raises:
        LookupError: If no channel is registered for the identifier's type.
        Exception: Whatever the channel raises, to trigger a retry.
    """
    notification = OTPNotificationEvent.model_validate(event)
    channel_type = (
        DeliveryChannelType.EMAIL
        if is_email(notification.identifier)
        else DeliveryChannelType.SMS
    )
    target = mask_identifier(notification.identifier)

    channel = get_channel(channel_type)
    if channel is None:
        notification_logger.error(
            f"No {channel_type.value} channel registered: identifier={target}"
        )
        raise LookupError(f"No delivery channel registered for {channel_type.value}")

    subject, body = build_message(notification)
    try:
        await channel.send(notification.identifier, subject, body)
    except Exception as e:
        notification_logger.error(
            f"Failed to deliver OTP: identifier={target}, "
            f"purpose={notification.purpose.value}, error={e}"
        )
        raise  # Re-raise to trigger retry mechanism

    notification_logger.info(
        f"OTP delivered: identifier={target}, channel={channel_type.value}, "
        f"purpose={notification.purpose.value}"
    )
