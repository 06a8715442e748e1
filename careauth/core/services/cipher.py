"""
Encryption of OTP codes at rest.

Codes are stored as Fernet tokens so the plaintext cannot be recovered by
inspecting storage alone. ``OTP_ENCRYPTION_KEYS`` is a list: the first key
encrypts, all of them decrypt, so keys can be rotated without invalidating
codes that are still pending.
"""

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from careauth.core.config import otp_logger, settings
from careauth.core.exceptions.types import CorruptedRecordException
from careauth.core.services.base import SingletonService


class CodeCipher(SingletonService):
    """
    Symmetric cipher for OTP codes.

    Example:
        >>> CodeCipher.init(["<fernet key>"])
        >>> token = CodeCipher.encrypt("042917")
        >>> CodeCipher.decrypt(token)
        '042917'
    """

    _fernet: MultiFernet | None = None

    @classmethod
    def init(cls, keys: list[str] | None = None) -> None:
        """
        Build the cipher from Fernet keys (defaults to ``settings.OTP_ENCRYPTION_KEYS``).

        Raises:
            ValueError: If no key is given or a key is not a valid Fernet key.
        """
        keys = keys if keys is not None else settings.OTP_ENCRYPTION_KEYS
        if not keys:
            raise ValueError("At least one OTP encryption key is required")
        cls._fernet = MultiFernet([Fernet(key.encode("utf-8")) for key in keys])
        cls._initialized = True

    @classmethod
    def _get_fernet(cls) -> MultiFernet:
        if cls._fernet is None:
            cls.init()
        return cls._fernet  # type: ignore[return-value]

    @classmethod
    def encrypt(cls, code: str) -> str:
        return cls._get_fernet().encrypt(code.encode("utf-8")).decode("utf-8")

    @classmethod
    def decrypt(cls, ciphertext: str, record_id: int | None = None) -> str:
        """
        Decrypt a stored code.

        Raises:
            CorruptedRecordException: If the ciphertext was tampered with,
                truncated or encrypted with an unknown key.
        """
        try:
            return cls._get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            otp_logger.error(
                f"OTP ciphertext could not be decrypted: record_id={record_id}"
            )
            raise CorruptedRecordException(record_id=record_id) from e

    @classmethod
    def _reset(cls) -> None:
        cls._fernet = None
        super()._reset()


__all__ = ["CodeCipher"]
