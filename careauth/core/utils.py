"""
Utility functions for the application.

- Secure password hashing using bcrypt
- Password verification against hashed values
- OTP code generation and constant-time comparison
- Opaque bearer token generation and hashing
- Masking of codes, emails and phone numbers for logs and responses
"""

import hashlib
import hmac
import re
import secrets

import bcrypt

from careauth.core.config import utils_logger

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _password_bytes(password: str) -> bytes:
    password_bytes = password.encode("utf-8")
    # Bcrypt has a 72-byte limit
    if len(password_bytes) > 72:
        utils_logger.debug(
            f"Password exceeds 72 bytes ({len(password_bytes)} bytes), truncating to 72 bytes"
        )
        password_bytes = password_bytes[:72]
    return password_bytes


def hash_password(password: str | None) -> str:
    """
    Hash a password using bcrypt with a random salt.

    Args:
        password: The plain text password to hash. Cannot be None.

    Returns:
        str: The bcrypt hash (60 characters, ``$2b$`` prefix).

    Raises:
        ValueError: If password is None.

    Examples:
        >>> hashed = hash_password("MySecurePassword123")
        >>> hashed.startswith("$2b$")
        True
    """
    if password is None:
        utils_logger.error("Attempted to hash None password")
        raise ValueError("Password cannot be None")

    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(password: str | None, hashed_password: str | None) -> bool:
    """
    Verify a password against a bcrypt hash.

    ``bcrypt.checkpw`` compares in constant time. Invalid input (None, a
    malformed hash) yields False instead of raising.

    Examples:
        >>> hashed = hash_password("MyPassword123")
        >>> verify_password("MyPassword123", hashed)
        True
        >>> verify_password("WrongPassword", hashed)
        False
    """
    if password is None or hashed_password is None:
        utils_logger.warning(
            "Password verification attempted with None value(s): "
            f"password={'None' if password is None else 'provided'}, "
            f"hashed_password={'None' if hashed_password is None else 'provided'}"
        )
        return False

    try:
        return bcrypt.checkpw(
            _password_bytes(password), hashed_password.encode("utf-8")
        )
    except (ValueError, AttributeError) as e:
        utils_logger.warning(
            f"Password verification failed due to invalid hash format or encoding: {type(e).__name__}"
        )
        return False


def generate_otp_code(length: int = 6) -> str:
    """
    Generate a zero-padded numeric OTP code from the ``secrets`` CSPRNG.

    Args:
        length: Number of digits. Default is 6.

    Returns:
        The code as a string, e.g. ``"004271"``.
    """
    if length < 1:
        raise ValueError("OTP length must be positive")
    return str(secrets.randbelow(10**length)).zfill(length)


def codes_match(submitted: str, expected: str) -> bool:
    """Compare two OTP codes in constant time."""
    return hmac.compare_digest(
        submitted.strip().encode("utf-8"), expected.encode("utf-8")
    )


def mask_otp(otp: str) -> str:
    """
    Mask an OTP code for logging purposes, showing only first and last digit.

    Examples:
        >>> mask_otp("123456")
        '1****6'
        >>> mask_otp("12")
        '12'
    """
    if len(otp) <= 2:
        return otp

    return f"{otp[0]}{'*' * (len(otp) - 2)}{otp[-1]}"


def is_email(identifier: str) -> bool:
    return bool(_EMAIL_PATTERN.match(identifier.strip()))


def mask_email(email: str) -> str:
    """
    Examples:
        >>> mask_email("jane.doe@example.com")
        'ja******@example.com'
    """
    local, _, domain = email.partition("@")
    if len(local) <= 2:
        return f"{local[:1]}*@{domain}"
    return f"{local[:2]}{'*' * (len(local) - 2)}@{domain}"


def mask_phone(phone: str) -> str:
    """
    Examples:
        >>> mask_phone("+2348012345678")
        '**********5678'
    """
    if len(phone) <= 4:
        return phone
    return f"{'*' * (len(phone) - 4)}{phone[-4:]}"


def mask_identifier(identifier: str) -> str:
    return mask_email(identifier) if is_email(identifier) else mask_phone(identifier)


def generate_token() -> str:
    """Generate an opaque, URL-safe bearer token (64 characters)."""
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    """SHA256 hex digest of a bearer token; only this is persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
