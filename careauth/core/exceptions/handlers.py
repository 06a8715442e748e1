from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from careauth.core.config import request_logger, settings
from careauth.core.exceptions.types import (
    AccessDeniedException,
    AppException,
    AuthenticationException,
    BadRequestException,
    ConflictException,
    CorruptedRecordException,
    DatabaseException,
    NotFoundException,
    OTPException,
    OTPInvalidException,
    OTPIssuanceException,
    RateLimitExceededException,
)

GENERIC_AUTH_MESSAGE = "Authentication failed."


async def general_exception_handler(request: Request, exc: AppException):
    """
    Fallback for any ``AppException`` without a dedicated handler.

    Returns:
        JSONResponse: The exception's status code and message.
    """
    request_logger.error(f"AppException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


async def database_exception_handler(request: Request, exc: DatabaseException):
    """
    Database failures never expose their SQL error to the client.

    Returns:
        JSONResponse: A generic message with status code 500.
    """
    request_logger.error(f"DatabaseException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "A database error occurred."},
    )


async def authentication_exception_handler(
    request: Request, exc: AuthenticationException
):
    """
    Handles authentication failures, including wrong credentials and access
    denied for a guard.

    Outside production the specific message is returned; in production every
    failure reads the same so callers cannot tell which check failed.

    Returns:
        JSONResponse: Status code 401 with a ``WWW-Authenticate: Bearer`` header.
    """
    if isinstance(exc, AccessDeniedException):
        request_logger.warning(f"AccessDeniedException: {exc}, reason={exc.reason}")
    else:
        request_logger.warning(f"AuthenticationException: {exc}")

    detail = (
        GENERIC_AUTH_MESSAGE if settings.ENVIRONMENT == "production" else exc.message
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def otp_exception_handler(request: Request, exc: OTPException):
    """
    Handles OTP verification failures.

    The body carries the machine-readable ``reason`` and, for a wrong code,
    ``attempts_remaining``.
    """
    request_logger.warning(f"{type(exc).__name__}: {exc}")
    content: dict = {"detail": exc.message, "reason": exc.reason.value}
    if isinstance(exc, OTPInvalidException):
        content["attempts_remaining"] = exc.attempts_remaining
    return JSONResponse(status_code=exc.status_code, content=content)


async def corrupted_record_exception_handler(
    request: Request, exc: CorruptedRecordException
):
    """
    An OTP record could not be decrypted. Logged at error level for alerting;
    the client only sees a generic failure.
    """
    request_logger.error(
        f"CorruptedRecordException: record_id={exc.record_id}, {exc}"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": "Verification is temporarily unavailable. Please request a new code.",
            "reason": exc.reason.value,
        },
    )


async def otp_issuance_exception_handler(
    request: Request, exc: OTPIssuanceException
):
    """A code could not be persisted. Logged at error level for alerting."""
    request_logger.error(f"OTPIssuanceException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "Could not send a verification code. Please try again."},
    )


async def rate_limit_exception_handler(
    request: Request, exc: RateLimitExceededException
):
    """
    Handles rate limit exceeded exceptions.

    Returns:
        JSONResponse: Status code 429 and a Retry-After header when known.
    """
    request_logger.warning(f"RateLimitExceededException: {exc}")
    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


async def not_found_exception_handler(request: Request, exc: NotFoundException):
    request_logger.info(f"NotFoundException: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def conflict_exception_handler(request: Request, exc: ConflictException):
    request_logger.info(f"ConflictException: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def bad_request_exception_handler(request: Request, exc: BadRequestException):
    request_logger.info(f"BadRequestException: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on ``app``. The most specific class wins."""
    app.add_exception_handler(CorruptedRecordException, corrupted_record_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OTPException, otp_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OTPIssuanceException, otp_issuance_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceededException, rate_limit_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AuthenticationException, authentication_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(NotFoundException, not_found_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ConflictException, conflict_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(BadRequestException, bad_request_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DatabaseException, database_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AppException, general_exception_handler)  # type: ignore[arg-type]


exception_schema = {
    status.HTTP_401_UNAUTHORIZED: {
        "description": "Authentication Error",
        "content": {
            "application/json": {
                "example": {"detail": GENERIC_AUTH_MESSAGE},
            }
        },
    },
    status.HTTP_429_TOO_MANY_REQUESTS: {
        "description": "Too Many Attempts",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Too many attempts. Please request a new OTP.",
                    "reason": "too_many_attempts",
                },
            }
        },
    },
}


__all__ = [
    "general_exception_handler",
    "database_exception_handler",
    "authentication_exception_handler",
    "otp_exception_handler",
    "corrupted_record_exception_handler",
    "otp_issuance_exception_handler",
    "rate_limit_exception_handler",
    "not_found_exception_handler",
    "conflict_exception_handler",
    "bad_request_exception_handler",
    "register_exception_handlers",
    "exception_schema",
]
