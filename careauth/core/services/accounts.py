"""
Account Service: OTP-gated flows for every actor kind.

Principal rows are only written through their registry, and only after
``OTPService.verify`` has reported a verified transition for the matching
purpose:

- account_verification -> ``mark_verified``
- password_reset       -> ``update_password`` + revoke all credentials
- email_update         -> ``update_contact(EMAIL)``
- phone_update         -> ``update_contact(PHONE)``
"""

from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.config import auth_logger
from careauth.core.db.crud import get_registry
from careauth.core.db.crud.principal import normalize_email
from careauth.core.db.models.otp import OTPRecord
from careauth.core.db.models.principal import PrincipalModel
from careauth.core.enums import ContactChannel, OTPPurpose, OwnerKind, PrincipalKind
from careauth.core.exceptions.types import (
    BadRequestException,
    ConflictException,
    InvalidCredentialsException,
    OTPNotFoundException,
    PrincipalAlreadyExistsException,
    PrincipalNotFoundException,
)
from careauth.core.services.credentials import CredentialService
from careauth.core.services.otp import OTPService, VerifyResult
from careauth.core.utils import hash_password, is_email, mask_email, verify_password

__all__ = ["AccountService"]

_CONTACT_PURPOSES = {
    ContactChannel.EMAIL: OTPPurpose.EMAIL_UPDATE,
    ContactChannel.PHONE: OTPPurpose.PHONE_UPDATE,
}


class AccountService:
    """Registration, verification, password and contact-change flows."""

    # =========================================================================
    # Registration & Verification
    # =========================================================================

    @classmethod
    async def register(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        email: str,
        password: str,
        phone_number: str | None = None,
    ) -> PrincipalModel:
        """
        Create an unverified principal and send it an account verification code.

        Raises:
            PrincipalAlreadyExistsException: If the email is taken in this registry.
        """
        registry = get_registry(kind)
        if await registry.find_by_email(session, email):
            auth_logger.warning(
                f"Registration failed: email exists, kind={kind.value}, "
                f"email={mask_email(email)}"
            )
            raise PrincipalAlreadyExistsException()

        principal = await registry.create(
            session,
            data={
                "email": email,
                "password_hash": hash_password(password),
                "phone_number": phone_number,
                "email_verified": False,
            },
        )
        auth_logger.info(
            f"Registered: kind={kind.value}, principal_id={principal.id}"
        )

        await OTPService.issue(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal.id,
            identifier=principal.email,
            purpose=OTPPurpose.ACCOUNT_VERIFICATION,
        )
        return principal

    @classmethod
    async def send_verification_code(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        identifier: str | None = None,
    ) -> OTPRecord:
        """
        (Re)send the account verification code to the principal's email, or
        to ``identifier`` when given (e.g. a phone number).

        Raises:
            PrincipalNotFoundException: If the principal does not exist.
            ConflictException: If the account is already verified.
        """
        principal = await cls._get_principal(session, kind, principal_id)
        if principal.email_verified:
            raise ConflictException("This account is already verified.")

        return await OTPService.issue(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal.id,
            identifier=identifier or principal.email,
            purpose=OTPPurpose.ACCOUNT_VERIFICATION,
        )

    @classmethod
    async def verify_account(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        identifier: str,
        code: str,
    ) -> PrincipalModel:
        """Verify an account verification code, then flag the principal verified."""
        await cls._get_principal(session, kind, principal_id)
        if is_email(identifier):
            identifier = normalize_email(identifier)
        await OTPService.verify(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal_id,
            identifier=identifier,
            purpose=OTPPurpose.ACCOUNT_VERIFICATION,
            code=code,
        )
        principal = await get_registry(kind).mark_verified(session, principal_id)
        auth_logger.info(
            f"Account verified: kind={kind.value}, principal_id={principal_id}"
        )
        return principal

    # =========================================================================
    # Password Management
    # =========================================================================

    @classmethod
    async def request_password_reset(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        email: str,
    ) -> OTPRecord | None:
        """
        Send a password reset code if the email is registered for ``kind``.

        Returns None for unknown emails so callers can answer identically in
        both cases.
        """
        principal = await get_registry(kind).find_by_email(session, email)
        if principal is None:
            auth_logger.warning(
                f"Password reset requested for unknown email: kind={kind.value}, "
                f"email={mask_email(email)}"
            )
            return None

        return await OTPService.issue(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal.id,
            identifier=principal.email,
            purpose=OTPPurpose.PASSWORD_RESET,
        )

    @classmethod
    async def reset_password(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        email: str,
        code: str,
        new_password: str,
    ) -> PrincipalModel:
        """
        Verify a password reset code, set the new password and revoke every
        credential of the principal.

        Raises:
            OTPNotFoundException: If the email is unknown for ``kind`` (no code
                can exist for it).
        """
        registry = get_registry(kind)
        principal = await registry.find_by_email(session, email)
        if principal is None:
            auth_logger.warning(
                f"Password reset failed: unknown email, kind={kind.value}, "
                f"email={mask_email(email)}"
            )
            # Same answer as a missing code, to avoid account enumeration
            raise OTPNotFoundException()

        await OTPService.verify(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal.id,
            identifier=principal.email,
            purpose=OTPPurpose.PASSWORD_RESET,
            code=code,
        )
        updated = await registry.update_password(
            session, principal.id, hash_password(new_password)
        )
        await CredentialService.revoke_all(session, kind, principal.id)
        auth_logger.info(
            f"Password reset: kind={kind.value}, principal_id={principal.id}"
        )
        return updated

    @classmethod
    async def change_password(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        current_password: str,
        new_password: str,
        revoke_sessions: bool = True,
    ) -> PrincipalModel:
        """
        Change the password of an authenticated principal.

        Raises:
            InvalidCredentialsException: If ``current_password`` is wrong.
        """
        principal = await cls._get_principal(session, kind, principal_id)
        if not verify_password(current_password, principal.password_hash):
            auth_logger.warning(
                f"Password change failed: wrong password, kind={kind.value}, "
                f"principal_id={principal_id}"
            )
            raise InvalidCredentialsException("Current password is incorrect.")

        updated = await get_registry(kind).update_password(
            session, principal_id, hash_password(new_password)
        )
        if revoke_sessions:
            await CredentialService.revoke_all(session, kind, principal_id)
        auth_logger.info(
            f"Password changed: kind={kind.value}, principal_id={principal_id}"
        )
        return updated

    # =========================================================================
    # Contact Changes
    # =========================================================================

    @classmethod
    async def request_contact_change(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        channel: ContactChannel,
        new_value: str,
    ) -> OTPRecord:
        """
        Send an email/phone update code to the new value.

        Raises:
            BadRequestException: If the value is malformed for the channel.
            ConflictException: If another principal of ``kind`` already uses it.
        """
        await cls._get_principal(session, kind, principal_id)
        new_value = cls._validate_contact(channel, new_value)
        await cls._ensure_contact_available(session, kind, principal_id, channel, new_value)

        return await OTPService.issue(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal_id,
            identifier=new_value,
            purpose=_CONTACT_PURPOSES[channel],
        )

    @classmethod
    async def confirm_contact_change(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        channel: ContactChannel,
        new_value: str,
        code: str,
    ) -> VerifyResult:
        """Verify the update code sent to ``new_value`` and store the new value."""
        new_value = cls._validate_contact(channel, new_value)
        result = await OTPService.verify(
            session,
            owner_kind=OwnerKind.for_principal(kind),
            owner_id=principal_id,
            identifier=new_value,
            purpose=_CONTACT_PURPOSES[channel],
            code=code,
        )
        # Uniqueness may have changed while the code was outstanding
        await cls._ensure_contact_available(session, kind, principal_id, channel, new_value)
        await get_registry(kind).update_contact(session, principal_id, channel, new_value)
        auth_logger.info(
            f"Contact updated: kind={kind.value}, principal_id={principal_id}, "
            f"channel={channel.value}"
        )
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    async def _get_principal(
        cls, session: AsyncSession, kind: PrincipalKind, principal_id: int
    ) -> PrincipalModel:
        principal = await get_registry(kind).find_by_id(session, principal_id)
        if principal is None:
            raise PrincipalNotFoundException()
        return principal

    @classmethod
    def _validate_contact(cls, channel: ContactChannel, value: str) -> str:
        value = (value or "").strip()
        match channel:
            case ContactChannel.EMAIL:
                if not is_email(value):
                    raise BadRequestException("A valid email address is required.")
                return value.lower()
            case ContactChannel.PHONE:
                digits = value.lstrip("+")
                if not digits.isdigit() or not 7 <= len(digits) <= 15:
                    raise BadRequestException("A valid phone number is required.")
                return value

    @classmethod
    async def _ensure_contact_available(
        cls,
        session: AsyncSession,
        kind: PrincipalKind,
        principal_id: int,
        channel: ContactChannel,
        value: str,
    ) -> None:
        registry = get_registry(kind)
        match channel:
            case ContactChannel.EMAIL:
                owner = await registry.find_by_email(session, value)
            case ContactChannel.PHONE:
                owner = await registry.find_by_phone(session, value)
        if owner is not None and owner.id != principal_id:
            raise ConflictException(f"This {channel.value} is already in use.")
