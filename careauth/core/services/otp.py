"""
OTP Service: issuance and verification of one-time codes.

This module owns the OTP state machine:

    pending --match--------------------> verified
    pending --expires_at passed---------> expired   (lazily, on read)
    pending --re-issued for same owner--> expired
    pending --last attempt wrong--------> failed

Every transition is a conditional UPDATE (see ``OTPRecordDB``), and an
attempt is consumed and committed before the submitted code is compared, so
concurrent verifications of one record can never share an attempt or both
succeed.

Example usage:
    from careauth.core.services.otp import OTPService

    record = await OTPService.issue(
        session=db_session,
        owner_kind=OwnerKind.CLIENT,
        owner_id=42,
        identifier="a@b.com",
        purpose=OTPPurpose.ACCOUNT_VERIFICATION,
    )

    result = await OTPService.verify(
        session=db_session,
        owner_kind=OwnerKind.CLIENT,
        owner_id=42,
        identifier="a@b.com",
        purpose=OTPPurpose.ACCOUNT_VERIFICATION,
        code="042917",
    )
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import math

from sqlalchemy.ext.asyncio import AsyncSession

from careauth.core.config import otp_logger, settings
from careauth.core.db.crud import otp_record_db
from careauth.core.db.models.base import utcnow
from careauth.core.db.models.otp import OTPRecord
from careauth.core.enums import OTPPurpose, OTPStatus, OwnerKind
from careauth.core.exceptions.types import (
    BadRequestException,
    DatabaseException,
    OTPAlreadyVerifiedException,
    OTPExpiredException,
    OTPInvalidException,
    OTPIssuanceException,
    OTPNotFoundException,
    OTPPendingConflictException,
    RateLimitExceededException,
    TooManyAttemptsException,
)
from careauth.core.services.cipher import CodeCipher
from careauth.core.services.notification import NotificationDispatcher
from careauth.core.utils import codes_match, generate_otp_code, mask_identifier

__all__ = ["OTPService", "VerifyResult"]


@dataclass(frozen=True)
class VerifyResult:
    """
    Outcome of a successful verification.

    Attributes:
        record_id: The verified OTP record.
        owner_kind: Owner tag of the record.
        owner_id: Owner id (None for pre-account flows).
        identifier: Email or phone the code was sent to.
        purpose: The flow the code gated.
        verified_at: When the record transitioned to verified.
        attempts: Attempts consumed, including the successful one.
    """

    record_id: int
    owner_kind: OwnerKind
    owner_id: int | None
    identifier: str
    purpose: OTPPurpose
    verified_at: datetime
    attempts: int


class OTPService:
    """
    Issues and verifies OTP records.

    All failures are raised as typed ``AppException`` subclasses; the HTTP
    boundary maps them to responses.
    """

    # How many times issuance retries after losing a race to a concurrent issuer
    ISSUE_RETRIES: int = 1

    # =========================================================================
    # Issuance
    # =========================================================================

    @classmethod
    async def issue(
        cls,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        identifier: str,
        purpose: OTPPurpose,
    ) -> OTPRecord:
        """
        Issue a new code for an owner tuple and hand it to the dispatcher.

        Any pending record for the same tuple is expired first. The call
        returns once the new record is committed; delivery happens in the
        background and its outcome never affects the record.

        Args:
            session: The database session.
            owner_kind: Owner tag.
            owner_id: Principal id, or None for pre-account flows.
            identifier: Email or phone the code is sent to.
            purpose: The flow the code gates.

        Returns:
            OTPRecord: The new pending record.

        Raises:
            BadRequestException: If the identifier is empty, or a principal
                owner kind comes without an id.
            RateLimitExceededException: If the resend cooldown is enabled and
                the previous code was issued too recently.
            OTPIssuanceException: If the record could not be persisted.
        """
        identifier = (identifier or "").strip()
        if not identifier:
            raise BadRequestException("An identifier is required to issue a code.")
        if owner_id is None and owner_kind != OwnerKind.GENERIC:
            raise BadRequestException(
                f"An owner id is required for {owner_kind.value} codes."
            )

        await cls._enforce_cooldown(session, owner_kind, owner_id, purpose, identifier)

        code = generate_otp_code(settings.OTP_LENGTH)
        expires_at = utcnow() + timedelta(
            minutes=settings.otp_expiry_minutes(purpose.value)
        )
        data = {
            "owner_kind": owner_kind,
            "owner_id": owner_id,
            "identifier": identifier,
            "purpose": purpose,
            "code_ciphertext": CodeCipher.encrypt(code),
            "expires_at": expires_at,
            "max_attempts": settings.otp_max_attempts(purpose.value),
        }

        record = await cls._persist(session, data)

        NotificationDispatcher.send(
            identifier=identifier,
            purpose=purpose,
            otp_code=code,
            owner_kind=owner_kind,
            owner_id=owner_id,
            expires_at=expires_at,
        )

        otp_logger.info(
            f"OTP issued: record_id={record.id}, owner={owner_kind.value}:{owner_id}, "
            f"identifier={mask_identifier(identifier)}, purpose={purpose.value}"
        )
        return record

    @classmethod
    async def _persist(cls, session: AsyncSession, data: dict) -> OTPRecord:
        tuple_key = (data["owner_kind"], data["owner_id"], data["purpose"])
        for attempt in range(cls.ISSUE_RETRIES + 1):
            try:
                await otp_record_db.invalidate_pending(
                    session,
                    owner_kind=data["owner_kind"],
                    owner_id=data["owner_id"],
                    purpose=data["purpose"],
                    identifier=data["identifier"],
                    commit_self=False,
                )
                return await otp_record_db.create_pending(session, data)
            except OTPPendingConflictException:
                await session.rollback()
                otp_logger.warning(
                    f"Concurrent OTP issuance detected for {tuple_key} "
                    f"(attempt {attempt + 1})"
                )
            except DatabaseException as e:
                await session.rollback()
                otp_logger.error(f"OTP issuance failed for {tuple_key}: {e.message}")
                raise OTPIssuanceException() from e

        otp_logger.error(f"OTP issuance kept conflicting for {tuple_key}")
        raise OTPIssuanceException()

    @classmethod
    async def _enforce_cooldown(
        cls,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        purpose: OTPPurpose,
        identifier: str,
    ) -> None:
        cooldown = settings.OTP_RESEND_COOLDOWN_SECONDS
        if cooldown <= 0:
            return

        last_issued = await otp_record_db.get_latest_issued_at(
            session, owner_kind, owner_id, purpose, identifier
        )
        if last_issued is None:
            return

        elapsed = (utcnow() - last_issued).total_seconds()
        if elapsed < cooldown:
            retry_after = max(math.ceil(cooldown - elapsed), 1)
            otp_logger.warning(
                f"OTP resend throttled: owner={owner_kind.value}:{owner_id}, "
                f"purpose={purpose.value}, retry_after={retry_after}s"
            )
            raise RateLimitExceededException(
                message="Please wait before requesting another code.",
                retry_after=retry_after,
            )

    # =========================================================================
    # Verification
    # =========================================================================

    @classmethod
    async def verify(
        cls,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        identifier: str,
        purpose: OTPPurpose,
        code: str,
    ) -> VerifyResult:
        """
        Verify a submitted code against the tuple's most recent record.

        Checks, in order: record exists, not already verified, not expired,
        attempt budget left. Then one attempt is consumed and committed, and
        the code is compared.

        Returns:
            VerifyResult: On a match.

        Raises:
            OTPNotFoundException: No record for the tuple and identifier.
            OTPAlreadyVerifiedException: The code was already used.
            OTPExpiredException: The code expired; a new one must be requested.
            TooManyAttemptsException: The attempt budget is exhausted.
            OTPInvalidException: Wrong code; carries ``attempts_remaining``.
            CorruptedRecordException: The stored code could not be decrypted.
        """
        identifier = (identifier or "").strip()
        log_ctx = (
            f"owner={owner_kind.value}:{owner_id}, "
            f"identifier={mask_identifier(identifier)}, purpose={purpose.value}"
        )

        record = await otp_record_db.find_most_recent(
            session, owner_kind, owner_id, purpose, identifier
        )
        if record is None or record.identifier != identifier:
            otp_logger.warning(f"OTP verification failed: not_found, {log_ctx}")
            raise OTPNotFoundException()

        await cls._reject_closed(session, record, utcnow(), log_ctx)

        new_count = await otp_record_db.atomic_increment_attempts(
            session, record.id, now=utcnow()
        )
        if new_count is None:
            # Lost the race: re-read and report what the winner left behind
            await session.refresh(record)
            await cls._reject_closed(session, record, utcnow(), log_ctx)
            otp_logger.warning(f"OTP verification failed: too_many_attempts, {log_ctx}")
            raise TooManyAttemptsException()

        expected = CodeCipher.decrypt(record.code_ciphertext, record_id=record.id)

        if codes_match(code or "", expected):
            verified_at = utcnow()
            if await otp_record_db.update_status(
                session, record.id, OTPStatus.VERIFIED, verified_at=verified_at
            ):
                otp_logger.info(
                    f"OTP verified: record_id={record.id}, attempts={new_count}, {log_ctx}"
                )
                return VerifyResult(
                    record_id=record.id,
                    owner_kind=record.owner_kind,
                    owner_id=record.owner_id,
                    identifier=record.identifier,
                    purpose=record.purpose,
                    verified_at=verified_at,
                    attempts=new_count,
                )
            await session.refresh(record)
            await cls._reject_closed(session, record, verified_at, log_ctx)
            raise TooManyAttemptsException()

        if new_count >= record.max_attempts:
            await otp_record_db.update_status(session, record.id, OTPStatus.FAILED)
            otp_logger.warning(
                f"OTP verification failed: too_many_attempts (budget exhausted), {log_ctx}"
            )
            raise TooManyAttemptsException()

        remaining = record.max_attempts - new_count
        otp_logger.warning(
            f"OTP verification failed: invalid_code, attempts_remaining={remaining}, {log_ctx}"
        )
        raise OTPInvalidException(attempts_remaining=remaining)

    @classmethod
    async def _reject_closed(
        cls,
        session: AsyncSession,
        record: OTPRecord,
        now: datetime,
        log_ctx: str,
    ) -> None:
        """Raise if ``record`` can no longer take an attempt, applying lazy transitions."""
        if record.status == OTPStatus.VERIFIED:
            otp_logger.warning(f"OTP verification failed: already_verified, {log_ctx}")
            raise OTPAlreadyVerifiedException()

        if record.status == OTPStatus.EXPIRED or record.is_expired(now):
            if record.status == OTPStatus.PENDING:
                await otp_record_db.update_status(session, record.id, OTPStatus.EXPIRED)
            otp_logger.warning(f"OTP verification failed: expired, {log_ctx}")
            raise OTPExpiredException()

        # A pending record at its budget is left alone: the caller that consumed
        # the last attempt is still comparing and owns the terminal transition.
        if record.status == OTPStatus.FAILED or record.attempts >= record.max_attempts:
            otp_logger.warning(f"OTP verification failed: too_many_attempts, {log_ctx}")
            raise TooManyAttemptsException()

    # =========================================================================
    # Status and maintenance
    # =========================================================================

    @classmethod
    async def get_status(
        cls,
        session: AsyncSession,
        owner_kind: OwnerKind,
        owner_id: int | None,
        identifier: str,
        purpose: OTPPurpose,
    ) -> OTPStatus | None:
        """
        Return the status of the tuple's latest record without consuming an
        attempt. A pending record past its expiry is transitioned first.
        """
        record = await otp_record_db.find_most_recent(
            session, owner_kind, owner_id, purpose, identifier.strip()
        )
        if record is None:
            return None
        if record.status == OTPStatus.PENDING and record.is_expired():
            await otp_record_db.update_status(session, record.id, OTPStatus.EXPIRED)
            return OTPStatus.EXPIRED
        return record.status

    @classmethod
    async def purge_expired(
        cls,
        session: AsyncSession,
        retention: timedelta | None = None,
        commit_self: bool = True,
    ) -> int:
        """
        Delete terminal and lazily expired records older than the retention window.

        Args:
            session: The database session.
            retention: Window to keep; defaults to ``OTP_RETENTION_HOURS``.
            commit_self: Whether to commit after deleting.

        Returns:
            int: Number of records deleted.
        """
        if retention is None:
            retention = timedelta(hours=settings.OTP_RETENTION_HOURS)
        cutoff = utcnow() - retention
        count = await otp_record_db.delete_older_than(
            session, cutoff, commit_self=commit_self
        )
        otp_logger.info(f"OTP purge complete: deleted={count}, cutoff={cutoff}")
        return count
