from enum import Enum


class PrincipalKind(str, Enum):
    """Actor kinds, each bound to its own guard and registry."""

    CLIENT = "client"
    WORKER = "worker"
    ADMIN = "admin"


class OwnerKind(str, Enum):
    """Owner tag stored on OTP records.

    ``GENERIC`` is used for pre-account flows where the record is keyed by
    the raw identifier instead of a principal id.
    """

    CLIENT = "client"
    WORKER = "worker"
    ADMIN = "admin"
    GENERIC = "generic"

    @classmethod
    def for_principal(cls, kind: PrincipalKind) -> "OwnerKind":
        return cls(kind.value)


class OTPPurpose(str, Enum):
    """Purpose of the OTP record."""

    ACCOUNT_VERIFICATION = "account_verification"
    PASSWORD_RESET = "password_reset"
    EMAIL_UPDATE = "email_update"
    PHONE_UPDATE = "phone_update"


class OTPStatus(str, Enum):
    """Lifecycle status of an OTP record.

    ``PENDING`` is the only status eligible for verification attempts; the
    other three are terminal.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    FAILED = "failed"


class OTPFailureReason(str, Enum):
    """Machine-readable reason attached to every OTP failure."""

    NOT_FOUND = "not_found"
    ALREADY_VERIFIED = "already_verified"
    EXPIRED = "expired"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    INVALID_CODE = "invalid_code"
    CORRUPTED_RECORD = "corrupted_record"


class ContactChannel(str, Enum):
    """Contact field a principal can change through an OTP flow."""

    EMAIL = "email"
    PHONE = "phone"


class DeliveryChannelType(str, Enum):
    """Outbound channel used to deliver an OTP."""

    EMAIL = "email"
    SMS = "sms"
