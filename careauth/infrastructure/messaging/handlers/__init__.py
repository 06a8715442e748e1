"""
Message handlers for the messaging infrastructure.

- otp_handler: delivers issued OTP codes over email or SMS
"""

from careauth.infrastructure.messaging.handlers.otp_handler import (
    build_message,
    handle_otp_notification,
)

__all__ = [
    "build_message",
    "handle_otp_notification",
]
