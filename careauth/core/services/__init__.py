from careauth.core.services.accounts import AccountService
from careauth.core.services.base import SingletonService
from careauth.core.services.cipher import CodeCipher
from careauth.core.services.credentials import CredentialService, IssuedCredential
from careauth.core.services.delivery import (
    DeliveryChannel,
    get_channel,
    register_channel,
    reset_channels,
)
from careauth.core.services.notification import (
    NotificationDispatcher,
    OTPNotificationEvent,
    OTP_NOTIFICATION_QUEUE,
)
from careauth.core.services.otp import OTPService, VerifyResult

__all__ = [
    # Core services
    "AccountService",
    "CodeCipher",
    "CredentialService",
    "IssuedCredential",
    "NotificationDispatcher",
    "OTPService",
    "SingletonService",
    "VerifyResult",
    # Notification
    "OTPNotificationEvent",
    "OTP_NOTIFICATION_QUEUE",
    # Delivery
    "DeliveryChannel",
    "get_channel",
    "register_channel",
    "reset_channels",
]
