from fastapi import status

from careauth.core.enums import OTPFailureReason


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        self.details = details
        super().__init__(message)


class DatabaseException(AppException):
    """Exception raised for database-related errors."""

    def __init__(self, message: str = "A database error occurred."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class AuthenticationException(AppException):
    """Exception raised for authentication-related errors."""

    def __init__(self, message: str = "Authentication failed."):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class InvalidCredentialsException(AuthenticationException):
    """Unknown email for the guard, or the password did not match."""

    def __init__(self, message: str = "Invalid email or password."):
        super().__init__(message)


class AccessDeniedException(AuthenticationException):
    """Credentials matched but the principal may not use this guard."""

    def __init__(
        self,
        message: str = "Access denied for this account.",
        reason: str = "not_permitted",
    ):
        super().__init__(message)
        self.reason = reason


class OTPException(AppException):
    """Base class for OTP verification failures."""

    reason: OTPFailureReason

    def __init__(
        self,
        message: str,
        status_code: int,
        details: dict | None = None,
    ):
        super().__init__(message, status_code, details)


class OTPNotFoundException(OTPException):
    reason = OTPFailureReason.NOT_FOUND

    def __init__(self, message: str = "No verification code found. Please request one."):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class OTPAlreadyVerifiedException(OTPException):
    reason = OTPFailureReason.ALREADY_VERIFIED

    def __init__(self, message: str = "This code has already been used."):
        super().__init__(message, status.HTTP_409_CONFLICT)


class OTPExpiredException(OTPException):
    """Exception raised when OTP has expired."""

    reason = OTPFailureReason.EXPIRED

    def __init__(self, message: str = "OTP has expired. Please request a new one."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class OTPInvalidException(OTPException):
    """Exception raised when the submitted OTP does not match."""

    reason = OTPFailureReason.INVALID_CODE

    def __init__(
        self,
        message: str = "Invalid OTP code.",
        attempts_remaining: int = 0,
    ):
        super().__init__(
            message,
            status.HTTP_400_BAD_REQUEST,
            details={"attempts_remaining": attempts_remaining},
        )
        self.attempts_remaining = attempts_remaining


class TooManyAttemptsException(OTPException):
    """Exception raised when the attempt budget of an OTP is exhausted."""

    reason = OTPFailureReason.TOO_MANY_ATTEMPTS

    def __init__(self, message: str = "Too many attempts. Please request a new OTP."):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS)


class CorruptedRecordException(OTPException):
    """Stored OTP ciphertext could not be decrypted (integrity fault)."""

    reason = OTPFailureReason.CORRUPTED_RECORD

    def __init__(
        self,
        message: str = "Stored verification code could not be decrypted.",
        record_id: int | None = None,
    ):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.record_id = record_id


class OTPIssuanceException(AppException):
    """The OTP record could not be persisted."""

    def __init__(self, message: str = "Could not issue a verification code."):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class OTPPendingConflictException(DatabaseException):
    """A concurrent issuer inserted a pending record for the same tuple."""

    def __init__(self, message: str = "A pending OTP already exists for this owner."):
        super().__init__(message)


class DispatchFailureException(AppException):
    """Notification dispatch failed. Logged only, never surfaced to callers."""

    def __init__(self, message: str = "Failed to dispatch OTP notification."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class RateLimitExceededException(AppException):
    """Exception raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int | None = None,
    ):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS)
        self.retry_after = retry_after


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class PrincipalNotFoundException(NotFoundException):
    def __init__(self, message: str = "Account not found."):
        super().__init__(message)


class ConflictException(AppException):
    """Exception raised when there's a conflict with existing resources."""

    def __init__(self, message: str = "Resource conflict."):
        super().__init__(message, status.HTTP_409_CONFLICT)


class PrincipalAlreadyExistsException(ConflictException):
    def __init__(self, message: str = "An account with this email already exists."):
        super().__init__(message)


class BadRequestException(AppException):
    """Exception raised for bad request errors."""

    def __init__(self, message: str = "Bad request."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


__all__ = [
    "AppException",
    "DatabaseException",
    "AuthenticationException",
    "InvalidCredentialsException",
    "AccessDeniedException",
    "OTPException",
    "OTPNotFoundException",
    "OTPAlreadyVerifiedException",
    "OTPExpiredException",
    "OTPInvalidException",
    "TooManyAttemptsException",
    "CorruptedRecordException",
    "OTPIssuanceException",
    "OTPPendingConflictException",
    "DispatchFailureException",
    "RateLimitExceededException",
    "NotFoundException",
    "PrincipalNotFoundException",
    "ConflictException",
    "PrincipalAlreadyExistsException",
    "BadRequestException",
]
