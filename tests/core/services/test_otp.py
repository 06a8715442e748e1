"""
Test suite for OTPService against a real SQLite database.

Run tests:
    pytest tests/core/services/test_otp.py -v
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from careauth.core.config import settings
from careauth.core.db.crud import otp_record_db
from careauth.core.db.models.base import utcnow
from careauth.core.enums import OTPFailureReason, OTPPurpose, OTPStatus, OwnerKind
from careauth.core.exceptions.types import (
    BadRequestException,
    CorruptedRecordException,
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
from careauth.core.services.otp import OTPService

pytestmark = pytest.mark.integration

EMAIL = "client@example.com"
TUPLE = {
    "owner_kind": OwnerKind.CLIENT,
    "owner_id": 1,
    "identifier": EMAIL,
    "purpose": OTPPurpose.PASSWORD_RESET,
}


def code_of(record) -> str:
    return CodeCipher.decrypt(record.code_ciphertext)


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


async def issue(session, **overrides):
    return await OTPService.issue(session, **{**TUPLE, **overrides})


async def verify(session, code, **overrides):
    return await OTPService.verify(session, code=code, **{**TUPLE, **overrides})


async def reload(session, record):
    await session.refresh(record)
    return record


class TestIssue:

    async def test_issue_creates_pending_encrypted_record(self, db_session, publisher):
        before = utcnow()
        record = await issue(db_session)

        assert record.status == OTPStatus.PENDING
        assert record.attempts == 0
        assert record.max_attempts == settings.otp_max_attempts("password_reset")
        code = code_of(record)
        assert len(code) == settings.OTP_LENGTH and code.isdigit()
        assert code not in record.code_ciphertext

        expected_expiry = before + timedelta(
            minutes=settings.otp_expiry_minutes("password_reset")
        )
        assert abs((record.expires_at - expected_expiry).total_seconds()) < 5

    async def test_issue_dispatches_code(self, db_session, publisher):
        record = await issue(db_session)
        await NotificationDispatcher.drain()

        publisher.assert_awaited_once()
        payload = publisher.call_args.args[1]
        assert payload["identifier"] == EMAIL
        assert payload["otp_code"] == code_of(record)
        assert payload["purpose"] == "password_reset"

    async def test_account_verification_uses_purpose_expiry(self, db_session, publisher):
        before = utcnow()
        record = await issue(db_session, purpose=OTPPurpose.ACCOUNT_VERIFICATION)

        minutes = settings.otp_expiry_minutes("account_verification")
        assert record.expires_at >= before + timedelta(minutes=minutes) - timedelta(seconds=5)

    async def test_reissue_supersedes_pending(self, db_session, publisher):
        first = await issue(db_session)
        first_code = code_of(first)
        second = await issue(db_session)

        assert (await reload(db_session, first)).status == OTPStatus.EXPIRED
        assert second.status == OTPStatus.PENDING

        if first_code != code_of(second):
            # The superseded code is checked against the new record only
            with pytest.raises(OTPInvalidException):
                await verify(db_session, first_code)

        result = await verify(db_session, code_of(second))
        assert result.record_id == second.id

    async def test_issue_requires_identifier(self, db_session, publisher):
        with pytest.raises(BadRequestException):
            await issue(db_session, identifier="   ")

    async def test_principal_kind_requires_owner_id(self, db_session, publisher):
        with pytest.raises(BadRequestException):
            await issue(db_session, owner_id=None)

    async def test_dispatch_failure_does_not_affect_record(self, db_session):
        NotificationDispatcher.init(AsyncMock(side_effect=RuntimeError("smtp down")))

        record = await issue(db_session)
        await NotificationDispatcher.drain()

        assert (await reload(db_session, record)).status == OTPStatus.PENDING
        result = await verify(db_session, code_of(record))
        assert result.attempts == 1

    async def test_database_error_raises_issuance_error(self, db_session, publisher):
        with patch.object(
            otp_record_db,
            "create_pending",
            AsyncMock(side_effect=DatabaseException("disk full")),
        ):
            with pytest.raises(OTPIssuanceException):
                await issue(db_session)

        publisher.assert_not_called()

    async def test_conflict_is_retried_once(self, db_session, publisher):
        real_create = otp_record_db.create_pending
        calls = []

        async def flaky_create(session, data, commit_self=True):
            calls.append(data)
            if len(calls) == 1:
                raise OTPPendingConflictException()
            return await real_create(session, data, commit_self=commit_self)

        with patch.object(otp_record_db, "create_pending", side_effect=flaky_create):
            record = await issue(db_session)

        assert len(calls) == 2
        assert record.status == OTPStatus.PENDING

    async def test_persistent_conflict_raises_issuance_error(self, db_session, publisher):
        with patch.object(
            otp_record_db,
            "create_pending",
            AsyncMock(side_effect=OTPPendingConflictException()),
        ):
            with pytest.raises(OTPIssuanceException):
                await issue(db_session)

    async def test_cooldown_disabled_by_default(self, db_session, publisher):
        await issue(db_session)
        await issue(db_session)

    async def test_cooldown_throttles_reissue(self, db_session, publisher):
        with patch.object(settings, "OTP_RESEND_COOLDOWN_SECONDS", 60):
            await issue(db_session)
            with pytest.raises(RateLimitExceededException) as exc_info:
                await issue(db_session)

        assert 0 < exc_info.value.retry_after <= 60


class TestVerify:

    async def test_correct_code_verifies(self, db_session, publisher):
        record = await issue(db_session)

        result = await verify(db_session, code_of(record))

        assert result.record_id == record.id
        assert result.owner_kind == OwnerKind.CLIENT
        assert result.purpose == OTPPurpose.PASSWORD_RESET
        assert result.attempts == 1
        record = await reload(db_session, record)
        assert record.status == OTPStatus.VERIFIED
        assert record.verified_at == result.verified_at

    async def test_code_cannot_be_reused(self, db_session, publisher):
        record = await issue(db_session)
        await verify(db_session, code_of(record))

        with pytest.raises(OTPAlreadyVerifiedException) as exc_info:
            await verify(db_session, code_of(record))
        assert exc_info.value.reason == OTPFailureReason.ALREADY_VERIFIED

    async def test_wrong_codes_exhaust_the_budget(self, db_session, publisher):
        record = await issue(db_session)
        code = code_of(record)
        bad = wrong_code(code)

        with pytest.raises(OTPInvalidException) as first:
            await verify(db_session, bad)
        with pytest.raises(OTPInvalidException) as second:
            await verify(db_session, bad)
        with pytest.raises(TooManyAttemptsException):
            await verify(db_session, bad)

        assert first.value.attempts_remaining == 2
        assert second.value.attempts_remaining == 1
        record = await reload(db_session, record)
        assert record.status == OTPStatus.FAILED
        assert record.attempts == 3

        # Even the right code is refused once the record failed
        with pytest.raises(TooManyAttemptsException):
            await verify(db_session, code)
        assert (await reload(db_session, record)).attempts == 3

    async def test_correct_code_on_last_attempt_verifies(self, db_session, publisher):
        record = await issue(db_session)
        code = code_of(record)

        for _ in range(2):
            with pytest.raises(OTPInvalidException):
                await verify(db_session, wrong_code(code))

        result = await verify(db_session, code)
        assert result.attempts == 3

    async def test_spent_pending_record_is_refused_but_left_pending(
        self, db_session, publisher
    ):
        record = await issue(db_session)
        await otp_record_db.update_by_conditions(
            db_session,
            [otp_record_db.model.id == record.id],
            {"attempts": record.max_attempts},
        )

        with pytest.raises(TooManyAttemptsException):
            await verify(db_session, wrong_code(code_of(record)))

        record = await reload(db_session, record)
        assert record.status == OTPStatus.PENDING
        assert record.attempts == record.max_attempts

    async def test_expired_code(self, db_session, publisher):
        record = await issue(db_session)
        await otp_record_db.update_by_conditions(
            db_session,
            [otp_record_db.model.id == record.id],
            {"expires_at": utcnow() - timedelta(seconds=1)},
        )

        with pytest.raises(OTPExpiredException):
            await verify(db_session, code_of(record))

        record = await reload(db_session, record)
        assert record.status == OTPStatus.EXPIRED
        assert record.attempts == 0

    async def test_failed_record_past_expiry_reports_expired(self, db_session, publisher):
        record = await issue(db_session)
        await otp_record_db.update_by_conditions(
            db_session,
            [otp_record_db.model.id == record.id],
            {
                "status": OTPStatus.FAILED,
                "expires_at": utcnow() - timedelta(seconds=1),
            },
        )

        with pytest.raises(OTPExpiredException):
            await verify(db_session, code_of(record))
        assert (await reload(db_session, record)).status == OTPStatus.FAILED

    async def test_no_record(self, db_session):
        with pytest.raises(OTPNotFoundException) as exc_info:
            await verify(db_session, "123456")
        assert exc_info.value.status_code == 404

    async def test_identifier_mismatch_is_not_found(self, db_session, publisher):
        record = await issue(db_session)

        with pytest.raises(OTPNotFoundException):
            await verify(db_session, code_of(record), identifier="other@example.com")
        assert (await reload(db_session, record)).attempts == 0

    async def test_other_kind_with_same_id_cannot_verify(self, db_session, publisher):
        record = await issue(db_session)

        for kind in (OwnerKind.WORKER, OwnerKind.ADMIN):
            with pytest.raises(OTPNotFoundException):
                await verify(db_session, code_of(record), owner_kind=kind)

        assert (await reload(db_session, record)).status == OTPStatus.PENDING

    async def test_generic_flow_keyed_by_identifier(self, db_session, publisher):
        generic = {"owner_kind": OwnerKind.GENERIC, "owner_id": None}
        first = await issue(db_session, identifier="a@example.com", **generic)
        second = await issue(db_session, identifier="b@example.com", **generic)

        # Distinct identifiers do not supersede each other
        assert (await reload(db_session, first)).status == OTPStatus.PENDING

        result = await verify(
            db_session, code_of(second), identifier="b@example.com", **generic
        )
        assert result.owner_id is None
        await verify(db_session, code_of(first), identifier="a@example.com", **generic)

    async def test_corrupted_ciphertext(self, db_session, publisher):
        record = await issue(db_session)
        await otp_record_db.update_by_conditions(
            db_session,
            [otp_record_db.model.id == record.id],
            {"code_ciphertext": "not-a-fernet-token"},
        )

        with pytest.raises(CorruptedRecordException) as exc_info:
            await verify(db_session, "123456")
        assert exc_info.value.record_id == record.id


class TestStatusAndPurge:

    async def test_get_status(self, db_session, publisher):
        assert await OTPService.get_status(db_session, **TUPLE) is None

        record = await issue(db_session)
        assert await OTPService.get_status(db_session, **TUPLE) == OTPStatus.PENDING

        await otp_record_db.update_by_conditions(
            db_session,
            [otp_record_db.model.id == record.id],
            {"expires_at": utcnow() - timedelta(seconds=1)},
        )
        assert await OTPService.get_status(db_session, **TUPLE) == OTPStatus.EXPIRED
        assert (await reload(db_session, record)).status == OTPStatus.EXPIRED

    async def test_purge_expired(self, db_session, publisher):
        old = await issue(db_session)
        await verify(db_session, code_of(old))
        await otp_record_db.update_by_conditions(
            db_session,
            [otp_record_db.model.id == old.id],
            {"updated_at": utcnow() - timedelta(hours=48)},
        )
        live = await issue(db_session, owner_id=2)

        deleted = await OTPService.purge_expired(db_session, retention=timedelta(hours=24))

        assert deleted == 1
        remaining = await otp_record_db.get_all(db_session)
        assert [r.id for r in remaining] == [live.id]
